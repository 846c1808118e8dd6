"""Deck management"""

from .deck_service import (
    DeckError,
    DeckNotFoundError,
    DeckValidationError,
    DeckVisibility,
    CreateDeckData,
    UpdateDeckData,
    DeckFilters,
    get_deck,
    get_deck_for_account,
    get_owned_deck,
    get_user_decks,
    get_public_decks,
    create_deck,
    update_deck,
    delete_deck,
    duplicate_deck,
    get_deck_stats,
)

__all__ = [
    'DeckError',
    'DeckNotFoundError',
    'DeckValidationError',
    'DeckVisibility',
    'CreateDeckData',
    'UpdateDeckData',
    'DeckFilters',
    'get_deck',
    'get_deck_for_account',
    'get_owned_deck',
    'get_user_decks',
    'get_public_decks',
    'create_deck',
    'update_deck',
    'delete_deck',
    'duplicate_deck',
    'get_deck_stats',
]
