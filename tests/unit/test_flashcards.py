import pytest
from pydantic import ValidationError

from neuroleaf.decks import CreateDeckData, create_deck
from neuroleaf.flashcards import (
    CreateFlashcardData,
    FlashcardContent,
    FlashcardFilters,
    FlashcardNotFoundError,
    FlashcardValidationError,
    ReorderItem,
    UpdateFlashcardData,
    bulk_delete_flashcards,
    bulk_import_flashcards,
    create_flashcard,
    delete_flashcard,
    duplicate_flashcards,
    export_flashcards,
    get_deck_statistics,
    get_flashcard,
    get_flashcards,
    get_owned_flashcard,
    reorder_flashcards,
    search_flashcards,
    update_flashcard,
)
from neuroleaf.decks import DeckNotFoundError
from neuroleaf.storage import create_account
from neuroleaf.subscription import UsageLimitError


def _card(i):
    return FlashcardContent(front_content=f'Question {i}?', back_content=f'Answer {i}')


def test_create_flashcard_appends_position(deck_with_cards, account):
    deck, cards = deck_with_cards
    card = create_flashcard(CreateFlashcardData(deck_id=deck['id'], front_content='What is ATP?', back_content='Energy currency'), account['id'])
    assert card['position'] == len(cards)
    assert card['ai_generated'] is False
    assert card['tags'] == []
    assert card['public_data'] == {}


def test_create_flashcard_requires_owned_deck(deck, db):
    stranger = create_account('stranger@example.com')
    with pytest.raises(DeckNotFoundError):
        create_flashcard(CreateFlashcardData(deck_id=deck['id'], front_content='Q', back_content='A'), stranger['id'])


def test_flashcard_validation():
    with pytest.raises(ValidationError):
        FlashcardContent(front_content='', back_content='A')
    with pytest.raises(ValidationError):
        FlashcardContent(front_content='Q', back_content='A', tags=['x' * 51])
    with pytest.raises(ValidationError):
        FlashcardFilters(sort_by='random')


def test_get_flashcards_filters(deck_with_cards):
    deck, _ = deck_with_cards
    assert get_flashcards(deck['id'])['total'] == 3
    hard = get_flashcards(deck['id'], FlashcardFilters(difficulty='hard'))
    assert [c['difficulty'] for c in hard['flashcards']] == ['hard']
    searched = get_flashcards(deck['id'], FlashcardFilters(search='PHOTOSYNTHESIS'))
    assert searched['total'] == 1
    tagged = get_flashcards(deck['id'], FlashcardFilters(tags=['cells']))
    assert tagged['total'] == 2
    page = get_flashcards(deck['id'], FlashcardFilters(limit=1, offset=1))
    assert page['total'] == 3
    assert page['flashcards'][0]['position'] == 1


def test_update_flashcard(deck_with_cards):
    _, cards = deck_with_cards
    updated = update_flashcard(cards[0]['id'], UpdateFlashcardData(back_content='New answer', tags=['edited'], difficulty='hard'))
    assert updated['back_content'] == 'New answer'
    assert updated['tags'] == ['edited']
    assert updated['difficulty'] == 'hard'
    with pytest.raises(FlashcardValidationError):
        update_flashcard(cards[0]['id'], UpdateFlashcardData())
    with pytest.raises(FlashcardNotFoundError):
        update_flashcard('missing', UpdateFlashcardData(back_content='x'))


def test_delete_flashcard(deck_with_cards):
    _, cards = deck_with_cards
    assert delete_flashcard(cards[0]['id']) is True
    with pytest.raises(FlashcardNotFoundError):
        get_flashcard(cards[0]['id'])
    with pytest.raises(FlashcardNotFoundError):
        delete_flashcard(cards[0]['id'])


def test_bulk_delete(deck_with_cards):
    _, cards = deck_with_cards
    assert bulk_delete_flashcards([]) == 0
    assert bulk_delete_flashcards([c['id'] for c in cards[:2]] + ['missing']) == 2


def test_duplicate_flashcards_into_other_deck(deck_with_cards, account):
    deck, cards = deck_with_cards
    target = create_deck(CreateDeckData(name='Target'), account['id'])
    copies = duplicate_flashcards([cards[0]['id']], target['id'])
    assert copies[0]['deck_id'] == target['id']
    assert copies[0]['front_content'] == cards[0]['front_content']
    assert copies[0]['id'] != cards[0]['id']
    same_deck = duplicate_flashcards([cards[1]['id']])
    assert same_deck[0]['deck_id'] == deck['id']


def test_reorder(deck_with_cards):
    deck, cards = deck_with_cards
    reorder_flashcards(deck['id'], [ReorderItem(id=cards[0]['id'], position=2), ReorderItem(id=cards[2]['id'], position=0)])
    ordered = get_flashcards(deck['id'])['flashcards']
    assert ordered[0]['id'] == cards[2]['id']
    assert ordered[-1]['id'] == cards[0]['id']


def test_bulk_import_validation(deck, account):
    with pytest.raises(FlashcardValidationError):
        bulk_import_flashcards(deck['id'], [], account['id'])


def test_bulk_import_respects_card_limit(deck, account):
    with pytest.raises(UsageLimitError):
        bulk_import_flashcards(deck['id'], [_card(i) for i in range(51)], account['id'])
    cards = bulk_import_flashcards(deck['id'], [_card(i) for i in range(50)], account['id'])
    assert len(cards) == 50
    with pytest.raises(UsageLimitError):
        create_flashcard(CreateFlashcardData(deck_id=deck['id'], front_content='Q', back_content='A'), account['id'])


def test_bulk_import_overwrite_replaces_cards(deck_with_cards, account):
    deck, _ = deck_with_cards
    cards = bulk_import_flashcards(deck['id'], [_card(1)], account['id'], overwrite_existing=True, ai_generated=True)
    assert len(cards) == 1
    assert cards[0]['position'] == 0
    assert cards[0]['ai_generated'] is True
    assert get_flashcards(deck['id'])['total'] == 1


def test_export_collects_every_page(deck, pro_account):
    bulk_import_flashcards(deck['id'], [_card(i) for i in range(130)], pro_account['id'])
    exported = export_flashcards(deck['id'], 'csv')
    assert len(exported['flashcards']) == 130
    assert exported['metadata']['format'] == 'csv'
    assert exported['metadata']['deck_name'] == 'Biology 101'


def test_search_is_scoped_to_owner(deck_with_cards, account, db):
    stranger = create_account('stranger@example.com')
    assert search_flashcards(account['id'], 'mitochondria')['total'] == 1
    assert search_flashcards(stranger['id'], 'mitochondria')['total'] == 0
    result = search_flashcards(account['id'], 'mitosis', deck_ids=[deck_with_cards[0]['id']])
    assert result['flashcards'][0]['deck_name'] == 'Biology 101'


def test_owned_flashcard(deck_with_cards, db):
    _, cards = deck_with_cards
    stranger = create_account('stranger@example.com')
    with pytest.raises(DeckNotFoundError):
        get_owned_flashcard(cards[0]['id'], stranger['id'])


def test_deck_statistics(deck_with_cards):
    deck, _ = deck_with_cards
    stats = get_deck_statistics(deck['id'])
    assert stats['total_cards'] == 3
    assert stats['by_difficulty'] == {'easy': 1, 'medium': 1, 'hard': 1}
    assert stats['ai_generated_count'] == 0
    assert stats['average_content_length']['front'] > 0
