"""Flashcard CRUD, export rendering and AI generation"""

from .flashcard_service import (
    FlashcardError,
    FlashcardNotFoundError,
    FlashcardValidationError,
    Difficulty,
    FlashcardContent,
    CreateFlashcardData,
    UpdateFlashcardData,
    FlashcardFilters,
    ReorderItem,
    get_flashcards,
    get_flashcard,
    get_owned_flashcard,
    create_flashcard,
    update_flashcard,
    delete_flashcard,
    bulk_delete_flashcards,
    duplicate_flashcards,
    reorder_flashcards,
    bulk_import_flashcards,
    export_flashcards,
    search_flashcards,
    get_deck_statistics,
)
from .export import ExportError, ExportValidationError, render_export, clean_text
from .generator import FlashcardGenerator, GeneratedFlashcard, ContentAnalysis, analyze_content, generate_flashcards
from .ai_generation import (
    FlashcardGenerationError,
    GenerationValidationError,
    AIGenerationRequest,
    generate_flashcards_for_deck,
    friendly_generation_error,
)

__all__ = [
    'FlashcardError',
    'FlashcardNotFoundError',
    'FlashcardValidationError',
    'Difficulty',
    'FlashcardContent',
    'CreateFlashcardData',
    'UpdateFlashcardData',
    'FlashcardFilters',
    'ReorderItem',
    'get_flashcards',
    'get_flashcard',
    'get_owned_flashcard',
    'create_flashcard',
    'update_flashcard',
    'delete_flashcard',
    'bulk_delete_flashcards',
    'duplicate_flashcards',
    'reorder_flashcards',
    'bulk_import_flashcards',
    'export_flashcards',
    'search_flashcards',
    'get_deck_statistics',
    'ExportError',
    'ExportValidationError',
    'render_export',
    'clean_text',
    'FlashcardGenerator',
    'GeneratedFlashcard',
    'ContentAnalysis',
    'analyze_content',
    'generate_flashcards',
    'FlashcardGenerationError',
    'GenerationValidationError',
    'AIGenerationRequest',
    'generate_flashcards_for_deck',
    'friendly_generation_error',
]
