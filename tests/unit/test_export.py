import csv
import io
import json

import pytest

from neuroleaf.flashcards import ExportValidationError, clean_text, render_export
from neuroleaf.flashcards.export import export_filename

DECK = {'id': 'deck-1', 'name': 'Cell Biology: Part 1', 'description': 'Cells'}
CARDS = [
    {
        'id': 'c1', 'front_content': '<b>What is ATP?</b>', 'back_content': 'Energy &amp; currency\tof cells',
        'position': 0, 'created_at': '2024-05-01T10:00:00+00:00', 'difficulty': 'easy',
        'tags': ['energy', 'cell biology'], 'ai_generated': True,
    },
    {
        'id': 'c2', 'front_content': 'Define osmosis', 'back_content': 'Water moving\nacross a membrane',
        'position': 1, 'created_at': '2024-05-02T10:00:00+00:00', 'difficulty': 'medium',
        'tags': [], 'ai_generated': False,
    },
]


def test_clean_text():
    assert clean_text('<p>A&nbsp;&lt;b&gt;</p>') == 'A <b>'
    assert clean_text(None) == ''


def test_export_filename():
    assert export_filename('Cell Biology: Part 1', 'anki') == 'Cell_Biology__Part_1_flashcards.txt'


def test_json_export():
    body, content_type, filename = render_export(DECK, CARDS, 'json')
    data = json.loads(body)
    assert content_type == 'application/json'
    assert filename.endswith('.json')
    assert data['metadata']['total_cards'] == 2
    assert data['metadata']['difficulties'] == {'easy': 1, 'medium': 1}
    assert data['metadata']['ai_generated_count'] == 1
    assert data['flashcards'][0]['tags'] == ['energy', 'cell biology']


def test_json_export_without_metadata():
    body, _, _ = render_export(DECK, CARDS, 'JSON', include_tags=False, include_metadata=False)
    data = json.loads(body)
    assert 'metadata' not in data
    assert 'tags' not in data['flashcards'][0]
    assert 'ai_generated' not in data['flashcards'][0]


def test_csv_export():
    body, content_type, _ = render_export(DECK, CARDS, 'csv')
    rows = list(csv.reader(io.StringIO(body)))
    assert content_type == 'text/csv'
    assert rows[0] == ['Position', 'Front', 'Back', 'Difficulty', 'Tags', 'Created Date', 'AI Generated']
    assert rows[1][1] == 'What is ATP?'
    assert rows[1][4] == 'energy; cell biology'
    assert rows[1][5] == '2024-05-01'
    assert rows[1][6] == 'Yes'


def test_anki_export():
    body, content_type, _ = render_export(DECK, CARDS, 'anki')
    lines = body.splitlines()
    assert content_type == 'text/plain'
    assert lines[0] == 'What is ATP?\tEnergy & currency of cells\tenergy cell_biology'
    assert lines[1] == 'Define osmosis\tWater moving<br>across a membrane\t'


@pytest.mark.parametrize('fmt', ['pdf', 'xml', ''])
def test_unsupported_formats(fmt):
    with pytest.raises(ExportValidationError):
        render_export(DECK, CARDS, fmt)


def test_empty_export_rejected():
    with pytest.raises(ExportValidationError):
        render_export(DECK, [], 'json')
