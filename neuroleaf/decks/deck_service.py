from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator

from neuroleaf.storage import get_db, new_id, require_account, row_to_dict, to_json
from neuroleaf.subscription import UsageLimitError, check_deck_limit
from neuroleaf.utils import get_logger, utcnow_iso

LOG = get_logger()


# Exceptions
class DeckError(Exception):
    pass


class DeckNotFoundError(DeckError):
    pass


class DeckValidationError(DeckError):
    pass


# Models
class DeckVisibility(str, Enum):
    PRIVATE = 'private'
    PUBLIC = 'public'
    SHARED = 'shared'


class CreateDeckData(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    visibility: DeckVisibility = DeckVisibility.PRIVATE
    tags: List[str] = Field(default_factory=list, max_length=10)

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Deck name is required')
        return v.strip()


class UpdateDeckData(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    visibility: Optional[DeckVisibility] = None
    tags: Optional[List[str]] = Field(None, max_length=10)


class DeckFilters(BaseModel):
    visibility: Optional[DeckVisibility] = None
    tags: Optional[List[str]] = None
    search: Optional[str] = None
    sort_by: str = 'updated_at'
    sort_order: str = 'desc'
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @field_validator('sort_by')
    @classmethod
    def valid_sort(cls, v):
        if v not in ('name', 'created_at', 'updated_at', 'total_cards'):
            raise ValueError('sort_by must be one of name, created_at, updated_at, total_cards')
        return v

    @field_validator('sort_order')
    @classmethod
    def valid_order(cls, v):
        v = (v or 'desc').lower()
        if v not in ('asc', 'desc'):
            raise ValueError('sort_order must be asc or desc')
        return v


_DECK_SELECT = (
    'SELECT d.*, (SELECT COUNT(*) FROM flashcards f WHERE f.deck_id = d.id) AS total_cards FROM decks d'
)


def _deck_dict(row) -> Optional[Dict[str, Any]]:
    deck = row_to_dict(row, json_fields={'tags': []})
    if deck is None:
        return None
    deck.setdefault('total_cards', 0)
    deck.update({'cards_due': 0, 'cards_studied_today': 0, 'accuracy_rate': None, 'last_studied': None})
    return deck


def _query_decks(where: List[str], params: List[Any], filters: DeckFilters) -> Dict[str, Any]:
    if filters.visibility:
        where.append('d.visibility = ?')
        params.append(filters.visibility.value)
    if filters.search:
        where.append('(LOWER(d.name) LIKE ? OR LOWER(COALESCE(d.description, \'\')) LIKE ?)')
        term = f'%{filters.search.lower()}%'
        params.extend([term, term])
    sql = _DECK_SELECT
    if where:
        sql += ' WHERE ' + ' AND '.join(where)
    sort_col = 'total_cards' if filters.sort_by == 'total_cards' else f'd.{filters.sort_by}'
    sql += f' ORDER BY {sort_col} {filters.sort_order.upper()}'

    decks = [_deck_dict(r) for r in get_db().fetch_all(sql, params)]
    if filters.tags:
        wanted = set(filters.tags)
        decks = [d for d in decks if wanted.issubset(set(d['tags']))]
    total = len(decks)
    return {'decks': decks[filters.offset:filters.offset + filters.limit], 'total': total}


def get_deck(deck_id: str) -> Dict[str, Any]:
    deck = _deck_dict(get_db().fetch_one(_DECK_SELECT + ' WHERE d.id = ?', (deck_id,)))
    if not deck:
        raise DeckNotFoundError('Deck not found')
    return deck


def get_deck_for_account(deck_id: str, account_id: str) -> Dict[str, Any]:
    """Return a deck the account owns, or any public deck."""
    deck = get_deck(deck_id)
    if deck['user_id'] != account_id and deck['visibility'] != DeckVisibility.PUBLIC.value:
        raise DeckNotFoundError('Deck not found or access denied')
    return deck


def get_owned_deck(deck_id: str, account_id: str) -> Dict[str, Any]:
    deck = get_deck(deck_id)
    if deck['user_id'] != account_id:
        raise DeckNotFoundError('Deck not found or access denied')
    return deck


def get_user_decks(account_id: str, filters: Optional[DeckFilters] = None) -> Dict[str, Any]:
    return _query_decks(['d.user_id = ?'], [account_id], filters or DeckFilters())


def get_public_decks(filters: Optional[DeckFilters] = None) -> Dict[str, Any]:
    filters = (filters or DeckFilters()).model_copy(update={'visibility': DeckVisibility.PUBLIC})
    return _query_decks([], [], filters)


def _require_deck_slot(account_id: str):
    require_account(account_id)
    res = check_deck_limit(account_id)
    if not res['can_create']:
        raise UsageLimitError(
            f"Deck limit reached ({res['current']}/{res['limit']}). Please upgrade to create more decks.",
            res['current'], res['limit'])


def create_deck(data: CreateDeckData, account_id: str) -> Dict[str, Any]:
    _require_deck_slot(account_id)
    deck_id = new_id()
    now = utcnow_iso()
    get_db().execute(
        'INSERT INTO decks (id, user_id, name, description, visibility, tags, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
        (deck_id, account_id, data.name, data.description, data.visibility.value, to_json(data.tags), now, now),
    )
    LOG.info('deck_created', extra={'deck_id': deck_id})
    return get_deck(deck_id)


def update_deck(deck_id: str, data: UpdateDeckData, account_id: str) -> Dict[str, Any]:
    get_owned_deck(deck_id, account_id)
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise DeckValidationError('No fields to update')
    if 'visibility' in updates:
        updates['visibility'] = DeckVisibility(updates['visibility']).value
    if 'tags' in updates:
        updates['tags'] = to_json(updates['tags'])
    updates['updated_at'] = utcnow_iso()
    assignments = ', '.join(f'{k} = ?' for k in updates)
    get_db().execute(f'UPDATE decks SET {assignments} WHERE id = ? AND user_id = ?', (*updates.values(), deck_id, account_id))
    LOG.info('deck_updated', extra={'deck_id': deck_id, 'fields': sorted(updates)})
    return get_deck(deck_id)


def delete_deck(deck_id: str, account_id: str) -> bool:
    count = get_db().execute('DELETE FROM decks WHERE id = ? AND user_id = ?', (deck_id, account_id))
    if count == 0:
        raise DeckNotFoundError('Deck not found or access denied')
    LOG.info('deck_deleted', extra={'deck_id': deck_id})
    return True


def duplicate_deck(deck_id: str, account_id: str, new_name: Optional[str] = None) -> Dict[str, Any]:
    source = get_deck_for_account(deck_id, account_id)
    _require_deck_slot(account_id)
    db = get_db()
    copy_id = new_id()
    now = utcnow_iso()
    statements = [(
        'INSERT INTO decks (id, user_id, name, description, visibility, tags, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
        (copy_id, account_id, new_name or f"{source['name']} (Copy)", source.get('description'),
         DeckVisibility.PRIVATE.value, to_json(source['tags']), now, now),
    )]
    for card in db.fetch_all('SELECT * FROM flashcards WHERE deck_id = ? ORDER BY position', (deck_id,)):
        statements.append((
            'INSERT INTO flashcards (id, deck_id, front_content, back_content, front_media_urls, back_media_urls, tags, '
            'difficulty, position, ai_generated, public_data, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
            (new_id(), copy_id, card['front_content'], card['back_content'], card['front_media_urls'], card['back_media_urls'],
             card['tags'], card['difficulty'], card['position'], card['ai_generated'], card['public_data'], now, now),
        ))
    db.execute_many(statements)
    LOG.info('deck_duplicated', extra={'source_deck_id': deck_id, 'deck_id': copy_id, 'cards': len(statements) - 1})
    return get_deck(copy_id)


def get_deck_stats(deck_id: str) -> Dict[str, Any]:
    deck = get_deck(deck_id)
    return {
        'total_cards': deck['total_cards'],
        'cards_due': 0,
        'cards_studied_today': 0,
        'accuracy_rate': None,
        'last_studied': None,
    }
