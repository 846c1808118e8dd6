import pytest

from neuroleaf.ai import LLMError
from neuroleaf.decks import DeckNotFoundError
from neuroleaf.flashcards import (
    FlashcardContent,
    FlashcardGenerationError,
    GenerationValidationError,
    bulk_import_flashcards,
    friendly_generation_error,
    generate_flashcards_for_deck,
    get_flashcards,
)
from neuroleaf.storage import create_account
from neuroleaf.subscription import UsageLimitError, check_ai_generation_limit, increment_ai_generation
from tests.fixtures.sample_data import LECTURE_NOTES


def test_generation_imports_cards_and_records_usage(mock_openai, deck, account):
    result = generate_flashcards_for_deck(account['id'], deck['id'], LECTURE_NOTES, number_of_cards=3)
    assert result['imported'] == 3
    stored = get_flashcards(deck['id'])['flashcards']
    assert all(c['ai_generated'] for c in stored)
    assert check_ai_generation_limit(account['id'])['current'] == 1


def test_generation_rejects_short_content(mock_openai, deck, account):
    with pytest.raises(GenerationValidationError):
        generate_flashcards_for_deck(account['id'], deck['id'], 'too short')
    assert mock_openai.calls == []


def test_generation_requires_owned_deck(mock_openai, deck, db):
    stranger = create_account('stranger@example.com')
    with pytest.raises(DeckNotFoundError):
        generate_flashcards_for_deck(stranger['id'], deck['id'], LECTURE_NOTES)


def test_generation_blocked_when_budget_spent(mock_openai, deck, account):
    for _ in range(10):
        increment_ai_generation(account['id'], 'flashcard')
    with pytest.raises(UsageLimitError):
        generate_flashcards_for_deck(account['id'], deck['id'], LECTURE_NOTES)
    assert mock_openai.calls == []


def test_generation_truncates_to_remaining_capacity(mock_openai, deck, account):
    filler = [FlashcardContent(front_content=f'Q{i}', back_content=f'A{i}') for i in range(48)]
    bulk_import_flashcards(deck['id'], filler, account['id'])
    result = generate_flashcards_for_deck(account['id'], deck['id'], LECTURE_NOTES)
    assert result['imported'] == 2
    assert get_flashcards(deck['id'])['total'] == 50


def test_generation_fails_when_deck_full(mock_openai, deck, account):
    filler = [FlashcardContent(front_content=f'Q{i}', back_content=f'A{i}') for i in range(50)]
    bulk_import_flashcards(deck['id'], filler, account['id'])
    with pytest.raises(UsageLimitError):
        generate_flashcards_for_deck(account['id'], deck['id'], LECTURE_NOTES)


def test_generation_with_no_usable_cards(mock_openai, deck, account):
    mock_openai.responses.append('[{"front": "What topics are covered?", "back": "Several topics"}]')
    with pytest.raises(FlashcardGenerationError):
        generate_flashcards_for_deck(account['id'], deck['id'], LECTURE_NOTES)
    assert check_ai_generation_limit(account['id'])['current'] == 0


@pytest.mark.parametrize('message,expected', [
    ('Invalid API key provided', 'AI service is not properly configured. Please contact support.'),
    ('You exceeded your current quota', 'AI generation is temporarily at capacity. Please try again in a few minutes.'),
    ('Connection reset', 'Unable to connect to AI service. Please check your internet connection and try again.'),
    ('something odd', 'AI generation failed: something odd'),
])
def test_friendly_generation_error(message, expected):
    assert friendly_generation_error(LLMError(message)) == expected
