from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator

from neuroleaf.decks import get_owned_deck, get_deck
from neuroleaf.storage import get_db, new_id, row_to_dict, to_json
from neuroleaf.subscription import UsageLimitError, can_create_cards, get_deck_card_limit_info
from neuroleaf.utils import get_logger, utcnow_iso

LOG = get_logger()

MAX_BULK_IMPORT = 1000


# Exceptions
class FlashcardError(Exception):
    pass


class FlashcardNotFoundError(FlashcardError):
    pass


class FlashcardValidationError(FlashcardError):
    pass


# Models
class Difficulty(str, Enum):
    EASY = 'easy'
    MEDIUM = 'medium'
    HARD = 'hard'


def _check_tags(tags):
    if tags is None:
        return tags
    for t in tags:
        if not 1 <= len(t) <= 50:
            raise ValueError('Each tag must be 1-50 characters')
    return tags


class FlashcardContent(BaseModel):
    front_content: str = Field(..., min_length=1, max_length=5000)
    back_content: str = Field(..., min_length=1, max_length=5000)
    front_media_urls: List[str] = Field(default_factory=list, max_length=10)
    back_media_urls: List[str] = Field(default_factory=list, max_length=10)
    tags: List[str] = Field(default_factory=list, max_length=20)
    difficulty: Difficulty = Difficulty.MEDIUM

    @field_validator('tags')
    @classmethod
    def valid_tags(cls, v):
        return _check_tags(v)


class CreateFlashcardData(FlashcardContent):
    deck_id: str
    position: Optional[int] = Field(None, ge=0)
    ai_generated: bool = False
    public_data: Dict[str, Any] = Field(default_factory=dict)


class UpdateFlashcardData(BaseModel):
    front_content: Optional[str] = Field(None, min_length=1, max_length=5000)
    back_content: Optional[str] = Field(None, min_length=1, max_length=5000)
    front_media_urls: Optional[List[str]] = Field(None, max_length=10)
    back_media_urls: Optional[List[str]] = Field(None, max_length=10)
    tags: Optional[List[str]] = Field(None, max_length=20)
    difficulty: Optional[Difficulty] = None
    position: Optional[int] = Field(None, ge=0)
    public_data: Optional[Dict[str, Any]] = None

    @field_validator('tags')
    @classmethod
    def valid_tags(cls, v):
        return _check_tags(v)


class FlashcardFilters(BaseModel):
    search: Optional[str] = None
    tags: Optional[List[str]] = None
    difficulty: Optional[Difficulty] = None
    ai_generated: Optional[bool] = None
    sort_by: str = 'position'
    sort_order: str = 'asc'
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @field_validator('sort_by')
    @classmethod
    def valid_sort(cls, v):
        if v not in ('position', 'created_at', 'updated_at', 'difficulty'):
            raise ValueError('sort_by must be one of position, created_at, updated_at, difficulty')
        return v

    @field_validator('sort_order')
    @classmethod
    def valid_order(cls, v):
        v = (v or 'asc').lower()
        if v not in ('asc', 'desc'):
            raise ValueError('sort_order must be asc or desc')
        return v


class ReorderItem(BaseModel):
    id: str
    position: int = Field(..., ge=0)


_JSON_FIELDS = {'front_media_urls': [], 'back_media_urls': [], 'tags': [], 'public_data': {}}


def _card_dict(row) -> Optional[Dict[str, Any]]:
    return row_to_dict(row, json_fields=_JSON_FIELDS, bool_fields=('ai_generated',))


def _card_count(deck_id: str) -> int:
    return get_db().fetch_value('SELECT COUNT(*) FROM flashcards WHERE deck_id = ?', (deck_id,), 0)


def _insert_statement(deck_id: str, card: FlashcardContent, position: int, ai_generated: bool,
                      public_data: Optional[Dict[str, Any]] = None, now: Optional[str] = None):
    now = now or utcnow_iso()
    card_id = new_id()
    return card_id, (
        'INSERT INTO flashcards (id, deck_id, front_content, back_content, front_media_urls, back_media_urls, tags, '
        'difficulty, position, ai_generated, public_data, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (card_id, deck_id, card.front_content, card.back_content, to_json(card.front_media_urls),
         to_json(card.back_media_urls), to_json(card.tags), card.difficulty.value, position,
         1 if ai_generated else 0, to_json(public_data or {}), now, now),
    )


def _require_card_capacity(account_id: str, deck_id: str, requested: int):
    allowed, _, reason = can_create_cards(account_id, deck_id, requested)
    if not allowed:
        info = get_deck_card_limit_info(account_id, deck_id)
        current = info.current_card_count if info else 0
        limit = info.card_limit if info else 0
        raise UsageLimitError(reason or 'Card limit reached', current, limit)


def get_flashcards(deck_id: str, filters: Optional[FlashcardFilters] = None) -> Dict[str, Any]:
    filters = filters or FlashcardFilters()
    where = ['deck_id = ?']
    params: List[Any] = [deck_id]
    if filters.search:
        where.append('(LOWER(front_content) LIKE ? OR LOWER(back_content) LIKE ?)')
        term = f'%{filters.search.lower()}%'
        params.extend([term, term])
    if filters.difficulty:
        where.append('difficulty = ?')
        params.append(filters.difficulty.value)
    if filters.ai_generated is not None:
        where.append('ai_generated = ?')
        params.append(1 if filters.ai_generated else 0)
    sql = f"SELECT * FROM flashcards WHERE {' AND '.join(where)} ORDER BY {filters.sort_by} {filters.sort_order.upper()}"
    cards = [_card_dict(r) for r in get_db().fetch_all(sql, params)]
    if filters.tags:
        wanted = set(filters.tags)
        cards = [c for c in cards if wanted.intersection(c['tags'])]
    return {'flashcards': cards[filters.offset:filters.offset + filters.limit], 'total': len(cards)}


def get_flashcard(flashcard_id: str) -> Dict[str, Any]:
    card = _card_dict(get_db().fetch_one('SELECT * FROM flashcards WHERE id = ?', (flashcard_id,)))
    if not card:
        raise FlashcardNotFoundError('Flashcard not found')
    return card


def get_owned_flashcard(flashcard_id: str, account_id: str) -> Dict[str, Any]:
    card = get_flashcard(flashcard_id)
    get_owned_deck(card['deck_id'], account_id)
    return card


def create_flashcard(data: CreateFlashcardData, account_id: str) -> Dict[str, Any]:
    get_owned_deck(data.deck_id, account_id)
    _require_card_capacity(account_id, data.deck_id, 1)
    position = data.position if data.position is not None else _card_count(data.deck_id)
    card_id, statement = _insert_statement(data.deck_id, data, position, data.ai_generated, data.public_data)
    get_db().execute(*statement)
    LOG.info('flashcard_created', extra={'flashcard_id': card_id, 'deck_id': data.deck_id})
    return get_flashcard(card_id)


def update_flashcard(flashcard_id: str, data: UpdateFlashcardData) -> Dict[str, Any]:
    get_flashcard(flashcard_id)
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise FlashcardValidationError('No fields to update')
    for field in _JSON_FIELDS:
        if field in updates:
            updates[field] = to_json(updates[field])
    if 'difficulty' in updates:
        updates['difficulty'] = Difficulty(updates['difficulty']).value
    updates['updated_at'] = utcnow_iso()
    assignments = ', '.join(f'{k} = ?' for k in updates)
    get_db().execute(f'UPDATE flashcards SET {assignments} WHERE id = ?', (*updates.values(), flashcard_id))
    return get_flashcard(flashcard_id)


def delete_flashcard(flashcard_id: str) -> bool:
    if get_db().execute('DELETE FROM flashcards WHERE id = ?', (flashcard_id,)) == 0:
        raise FlashcardNotFoundError('Flashcard not found')
    LOG.info('flashcard_deleted', extra={'flashcard_id': flashcard_id})
    return True


def bulk_delete_flashcards(flashcard_ids: List[str]) -> int:
    if not flashcard_ids:
        return 0
    placeholders = ', '.join('?' for _ in flashcard_ids)
    deleted = get_db().execute(f'DELETE FROM flashcards WHERE id IN ({placeholders})', flashcard_ids)
    LOG.info('flashcards_bulk_deleted', extra={'requested': len(flashcard_ids), 'deleted': deleted})
    return deleted


def duplicate_flashcards(flashcard_ids: List[str], target_deck_id: Optional[str] = None) -> List[Dict[str, Any]]:
    sources = [get_flashcard(fid) for fid in flashcard_ids]
    now = utcnow_iso()
    statements, new_ids = [], []
    for src in sources:
        content = FlashcardContent(**{k: src[k] for k in FlashcardContent.model_fields})
        card_id, statement = _insert_statement(target_deck_id or src['deck_id'], content, 0, src['ai_generated'], src['public_data'], now)
        new_ids.append(card_id)
        statements.append(statement)
    get_db().execute_many(statements)
    return [get_flashcard(cid) for cid in new_ids]


def reorder_flashcards(deck_id: str, positions: List[ReorderItem]) -> bool:
    now = utcnow_iso()
    get_db().execute_many([
        ('UPDATE flashcards SET position = ?, updated_at = ? WHERE id = ? AND deck_id = ?', (p.position, now, p.id, deck_id))
        for p in positions
    ])
    return True


def bulk_import_flashcards(deck_id: str, flashcards: List[FlashcardContent], account_id: str,
                           overwrite_existing: bool = False, ai_generated: bool = False) -> List[Dict[str, Any]]:
    if not flashcards:
        raise FlashcardValidationError('At least one flashcard is required')
    if len(flashcards) > MAX_BULK_IMPORT:
        raise FlashcardValidationError(f'Cannot import more than {MAX_BULK_IMPORT} flashcards at once')
    get_owned_deck(deck_id, account_id)

    if overwrite_existing:
        info = get_deck_card_limit_info(account_id, deck_id)
        if info and info.card_limit != -1 and len(flashcards) > info.card_limit:
            raise UsageLimitError(
                f'Card limit reached. A deck can hold at most {info.card_limit} cards.', len(flashcards), info.card_limit)
        offset = 0
    else:
        _require_card_capacity(account_id, deck_id, len(flashcards))
        offset = _card_count(deck_id)

    now = utcnow_iso()
    statements = []
    if overwrite_existing:
        statements.append(('DELETE FROM flashcards WHERE deck_id = ?', (deck_id,)))
    new_ids = []
    for i, card in enumerate(flashcards):
        card_id, statement = _insert_statement(deck_id, card, offset + i, ai_generated, now=now)
        new_ids.append(card_id)
        statements.append(statement)
    get_db().execute_many(statements)
    LOG.info('flashcards_imported', extra={'deck_id': deck_id, 'count': len(new_ids), 'overwrite': overwrite_existing, 'ai_generated': ai_generated})
    placeholders = ', '.join('?' for _ in new_ids)
    rows = get_db().fetch_all(f'SELECT * FROM flashcards WHERE id IN ({placeholders}) ORDER BY position', new_ids)
    return [_card_dict(r) for r in rows]


def export_flashcards(deck_id: str, export_format: str = 'json', filters: Optional[FlashcardFilters] = None) -> Dict[str, Any]:
    deck = get_deck(deck_id)
    filters = (filters or FlashcardFilters()).model_copy(update={'limit': 100})
    cards: List[Dict[str, Any]] = []
    offset = 0
    while True:
        page = get_flashcards(deck_id, filters.model_copy(update={'offset': offset}))
        cards.extend(page['flashcards'])
        offset += filters.limit
        if offset >= page['total']:
            break
    return {
        'flashcards': cards,
        'metadata': {
            'deck_name': deck['name'],
            'deck_description': deck.get('description'),
            'total_cards': len(cards),
            'exported_at': utcnow_iso(),
            'format': export_format,
        },
    }


def search_flashcards(account_id: str, query: str, deck_ids: Optional[List[str]] = None,
                      limit: int = 20, offset: int = 0) -> Dict[str, Any]:
    where = ['d.user_id = ?', '(LOWER(f.front_content) LIKE ? OR LOWER(f.back_content) LIKE ?)']
    term = f'%{(query or "").lower()}%'
    params: List[Any] = [account_id, term, term]
    if deck_ids:
        where.append(f"f.deck_id IN ({', '.join('?' for _ in deck_ids)})")
        params.extend(deck_ids)
    base = f"FROM flashcards f JOIN decks d ON d.id = f.deck_id WHERE {' AND '.join(where)}"
    db = get_db()
    total = db.fetch_value(f'SELECT COUNT(*) {base}', params, 0)
    rows = db.fetch_all(f'SELECT f.*, d.name AS deck_name {base} ORDER BY f.updated_at DESC LIMIT ? OFFSET ?', [*params, limit, offset])
    return {'flashcards': [_card_dict(r) for r in rows], 'total': total}


def get_deck_statistics(deck_id: str) -> Dict[str, Any]:
    cards = [_card_dict(r) for r in get_db().fetch_all('SELECT * FROM flashcards WHERE deck_id = ?', (deck_id,))]
    total = len(cards)
    by_difficulty = {d.value: 0 for d in Difficulty}
    for c in cards:
        by_difficulty[c['difficulty']] = by_difficulty.get(c['difficulty'], 0) + 1
    return {
        'total_cards': total,
        'by_difficulty': by_difficulty,
        'ai_generated_count': sum(1 for c in cards if c['ai_generated']),
        'with_media_count': sum(1 for c in cards if c['front_media_urls'] or c['back_media_urls']),
        'average_content_length': {
            'front': round(sum(len(c['front_content']) for c in cards) / total) if total else 0,
            'back': round(sum(len(c['back_content']) for c in cards) / total) if total else 0,
        },
    }
