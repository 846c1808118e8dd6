"""Render exported flashcards as JSON, CSV or Anki text."""
import re
import io
import csv
import json
from typing import List, Dict, Any, Tuple

from neuroleaf.utils import get_logger, utcnow_iso, parse_timestamp

LOG = get_logger()

SUPPORTED_FORMATS = ('json', 'csv', 'anki')

_CONTENT_TYPES = {
    'json': 'application/json',
    'csv': 'text/csv',
    'anki': 'text/plain',
}

_TAG_RE = re.compile(r'<[^>]*>')
_ENTITIES = [
    ('&nbsp;', ' '),
    ('&amp;', '&'),
    ('&lt;', '<'),
    ('&gt;', '>'),
    ('&quot;', '"'),
    ('&#39;', "'"),
]


class ExportError(Exception):
    pass


class ExportValidationError(ExportError):
    pass


def clean_text(text: str) -> str:
    text = _TAG_RE.sub('', text or '')
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()


def export_filename(deck_name: str, fmt: str) -> str:
    ext = 'txt' if fmt == 'anki' else fmt
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', deck_name)}_flashcards.{ext}"


def to_json_export(deck: Dict[str, Any], flashcards: List[Dict[str, Any]], include_tags: bool = True,
                   include_difficulty: bool = True, include_metadata: bool = True) -> str:
    data: Dict[str, Any] = {}
    if include_metadata:
        difficulties: Dict[str, int] = {}
        for card in flashcards:
            difficulties[card['difficulty']] = difficulties.get(card['difficulty'], 0) + 1
        data['metadata'] = {
            'deck_name': deck['name'],
            'deck_description': deck.get('description'),
            'total_cards': len(flashcards),
            'export_date': utcnow_iso(),
            'difficulties': difficulties,
            'ai_generated_count': sum(1 for c in flashcards if c.get('ai_generated')),
        }
    cards = []
    for card in flashcards:
        item = {
            'id': card['id'],
            'front_content': card['front_content'],
            'back_content': card['back_content'],
            'position': card['position'],
            'created_at': card['created_at'],
        }
        if include_difficulty:
            item['difficulty'] = card['difficulty']
        if include_tags:
            item['tags'] = card.get('tags', [])
        if include_metadata:
            item['ai_generated'] = bool(card.get('ai_generated'))
        cards.append(item)
    data['flashcards'] = cards
    return json.dumps(data, indent=2, ensure_ascii=False)


def to_csv_export(flashcards: List[Dict[str, Any]], include_tags: bool = True,
                  include_difficulty: bool = True, include_metadata: bool = True) -> str:
    headers = ['Position', 'Front', 'Back']
    if include_difficulty:
        headers.append('Difficulty')
    if include_tags:
        headers.append('Tags')
    if include_metadata:
        headers.extend(['Created Date', 'AI Generated'])

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(headers)
    for card in flashcards:
        row = [card['position'], clean_text(card['front_content']), clean_text(card['back_content'])]
        if include_difficulty:
            row.append(card['difficulty'])
        if include_tags:
            row.append('; '.join(card.get('tags', [])))
        if include_metadata:
            created = parse_timestamp(card.get('created_at'))
            row.append(created.date().isoformat() if created else '')
            row.append('Yes' if card.get('ai_generated') else 'No')
        writer.writerow(row)
    return buf.getvalue()


def to_anki_export(flashcards: List[Dict[str, Any]]) -> str:
    lines = []
    for card in flashcards:
        front = clean_text(card['front_content']).replace('\t', ' ').replace('\n', '<br>')
        back = clean_text(card['back_content']).replace('\t', ' ').replace('\n', '<br>')
        tags = ' '.join(t.replace(' ', '_') for t in card.get('tags', []))
        lines.append(f'{front}\t{back}\t{tags}')
    return '\n'.join(lines) + ('\n' if lines else '')


def render_export(deck: Dict[str, Any], flashcards: List[Dict[str, Any]], fmt: str, include_tags: bool = True,
                  include_difficulty: bool = True, include_metadata: bool = True) -> Tuple[str, str, str]:
    """Returns (body, content_type, filename)."""
    fmt = (fmt or '').lower()
    if fmt == 'pdf':
        raise ExportValidationError('PDF export is not supported. Use json, csv or anki.')
    if fmt not in SUPPORTED_FORMATS:
        raise ExportValidationError(f'Unsupported export format: {fmt}')
    if not flashcards:
        raise ExportValidationError('No flashcards to export')

    if fmt == 'json':
        body = to_json_export(deck, flashcards, include_tags, include_difficulty, include_metadata)
    elif fmt == 'csv':
        body = to_csv_export(flashcards, include_tags, include_difficulty, include_metadata)
    else:
        body = to_anki_export(flashcards)
    LOG.info('flashcards_exported', extra={'deck_id': deck.get('id'), 'format': fmt, 'count': len(flashcards)})
    return body, _CONTENT_TYPES[fmt], export_filename(deck['name'], fmt)
