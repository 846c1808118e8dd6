from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from neuroleaf.decks import get_owned_deck
from neuroleaf.subscription import (
    UsageLimitError,
    can_create_cards,
    get_deck_card_limit_info,
    require_ai_generation,
    increment_ai_generation,
)
from neuroleaf.utils import get_logger
from .flashcard_service import FlashcardContent, bulk_import_flashcards
from .generator import generate_flashcards

LOG = get_logger()

MIN_CONTENT_LENGTH = 10

NO_CARDS_MESSAGE = (
    'No flashcards were generated. The AI may have had trouble processing your content. '
    'Please try with different content or fewer cards.'
)


class FlashcardGenerationError(Exception):
    pass


class GenerationValidationError(FlashcardGenerationError):
    pass


class AIGenerationRequest(BaseModel):
    content: str
    number_of_cards: int = Field(5, ge=1, le=5)
    difficulty: Optional[str] = None
    language: str = 'en'
    subject: Optional[str] = None


def generate_flashcards_for_deck(account_id: str, deck_id: str, content: str, number_of_cards: int = 5,
                                 difficulty: Optional[str] = None, language: str = 'en', subject: Optional[str] = None,
                                 request_id: Optional[str] = None) -> Dict[str, Any]:
    if not content or len(content.strip()) < MIN_CONTENT_LENGTH:
        raise GenerationValidationError(
            'Content is too short. Please provide at least 10 characters of content to generate flashcards.')
    req = AIGenerationRequest(content=content, number_of_cards=number_of_cards, difficulty=difficulty,
                              language=language, subject=subject)

    get_owned_deck(deck_id, account_id)
    require_ai_generation(account_id)

    LOG.info('ai_generation_start', extra={'deck_id': deck_id, 'content_length': len(content), 'number_of_cards': req.number_of_cards})
    result = generate_flashcards(req.content, req.number_of_cards, req.difficulty, req.language, req.subject, request_id=request_id)
    cards = result.flashcards

    if cards:
        allowed, max_allowed, reason = can_create_cards(account_id, deck_id, len(cards))
        if not allowed:
            if max_allowed <= 0:
                info = get_deck_card_limit_info(account_id, deck_id)
                raise UsageLimitError(reason or 'Card limit exceeded',
                                      info.current_card_count if info else 0, info.card_limit if info else 0)
            LOG.info('ai_generation_truncated', extra={'generated': len(cards), 'allowed': max_allowed})
            cards = cards[:max_allowed]

    if not cards:
        raise FlashcardGenerationError(NO_CARDS_MESSAGE)

    imported = bulk_import_flashcards(
        deck_id,
        [FlashcardContent(front_content=c.front, back_content=c.back, tags=c.tags, difficulty=c.difficulty) for c in cards],
        account_id,
        overwrite_existing=False,
        ai_generated=True,
    )
    increment_ai_generation(
        account_id,
        'flashcard',
        deck_id=deck_id,
        prompt=req.content,
        generated_content={'flashcards': [c.model_dump() for c in cards], 'metadata': result.metadata},
        model_used=result.metadata.get('model'),
        tokens_used=result.metadata.get('tokens_used'),
        generation_time_ms=result.metadata.get('processing_time'),
    )
    LOG.info('ai_generation_imported', extra={'deck_id': deck_id, 'imported': len(imported), 'requested': req.number_of_cards})
    return {
        'flashcards': [c.model_dump() for c in cards],
        'metadata': result.metadata,
        'imported': len(imported),
    }


def friendly_generation_error(exc: Exception) -> str:
    msg = str(exc)
    lowered = msg.lower()
    if 'api key' in lowered or 'api_key' in lowered or 'authentication' in lowered:
        return 'AI service is not properly configured. Please contact support.'
    if 'quota' in lowered:
        return 'AI generation is temporarily at capacity. Please try again in a few minutes.'
    if 'content' in lowered and 'short' in lowered:
        return msg
    if 'no flashcards' in lowered:
        return msg
    if 'network' in lowered or 'connection' in lowered:
        return 'Unable to connect to AI service. Please check your internet connection and try again.'
    return f'AI generation failed: {msg}'
