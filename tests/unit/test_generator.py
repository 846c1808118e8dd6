import pytest

from neuroleaf.flashcards.generator import (
    ContentType,
    GeneratedFlashcard,
    GeneratorValidationError,
    analyze_content,
    build_flashcard_prompt,
    calculate_optimal_card_count,
    chunk_content,
    deduplicate_and_optimize,
    detect_content_type,
    ensure_difficulty_distribution,
    extract_content_metadata,
    generate_flashcards,
    parse_flashcards,
    text_similarity,
    validate_card,
    validate_flashcard_quality,
)
from tests.fixtures.sample_data import LECTURE_NOTES

GOOD = GeneratedFlashcard(
    front='What is the primary function of chlorophyll in plants?',
    back='Chlorophyll absorbs light energy that drives photosynthesis in the chloroplast.',
)


def test_parse_json_array_with_fences_and_trailing_commas():
    response = '```json\n[{"front": "What is ATP?", "back": "The energy currency", "difficulty": "easy"},]\n```'
    cards = parse_flashcards(response)
    assert len(cards) == 1
    assert cards[0].difficulty == 'easy'


def test_parse_truncated_json_array():
    response = '[{"q": "What is DNA?", "a": "Genetic material"}, {"q": "What is RNA?", "a": "Messen'
    cards = parse_flashcards(response)
    assert [c.front for c in cards] == ['What is DNA?']


def test_parse_qa_lines():
    response = 'Q1: What is osmosis?\nA1: Movement of water\nacross a membrane\nQ2: What is diffusion?\nA2: Movement of particles'
    cards = parse_flashcards(response)
    assert len(cards) == 2
    assert cards[0].back == 'Movement of water across a membrane'


def test_parse_garbage_returns_empty():
    assert parse_flashcards('') == []


def test_unknown_difficulty_clamped():
    assert GeneratedFlashcard(front='a', back='b', difficulty='insane').difficulty == 'medium'


def test_validate_card_accepts_educational_question():
    assert validate_card(GOOD) == (True, 'Valid educational flashcard')


@pytest.mark.parametrize('front,back', [
    ('What are the main topics covered in this lecture?', 'Photosynthesis and respiration in living cells.'),
    ('What is discussed on page 4 of the notes?', 'The light reactions of photosynthesis in detail.'),
    ('What is the primary function of ATP?', 'Energy'),
    ('Tell me something', 'Something interesting about plant biology and cells.'),
])
def test_validate_card_rejects(front, back):
    ok, _ = validate_card(GeneratedFlashcard(front=front, back=back))
    assert ok is False


def test_validate_quality_filters():
    bad = GeneratedFlashcard(front='What topics are covered?', back='Several topics')
    assert validate_flashcard_quality([GOOD, bad]) == [GOOD]


def test_text_similarity():
    assert text_similarity('a b c', 'a b c') == 1.0
    assert text_similarity('', '') == 0.0


def test_deduplicate_drops_near_copies():
    copy = GeneratedFlashcard(front=GOOD.front, back='Something entirely different about leaves and roots.')
    assert deduplicate_and_optimize([GOOD, copy], 10) == [GOOD]


def test_difficulty_distribution():
    cards = [GeneratedFlashcard(front=f'q{i}', back='a', difficulty=d) for i, d in enumerate(['easy'] * 5 + ['medium'] * 5 + ['hard'] * 5)]
    picked = ensure_difficulty_distribution(cards, 10)
    assert len(picked) == 10
    assert sum(1 for c in picked if c.difficulty == 'easy') == 3
    assert sum(1 for c in picked if c.difficulty == 'medium') == 5
    assert sum(1 for c in picked if c.difficulty == 'hard') == 2


def test_analyze_content():
    analysis = analyze_content(LECTURE_NOTES)
    assert analysis.word_count == len(LECTURE_NOTES.split())
    assert analysis.paragraph_count == 3
    assert analysis.complexity in ('simple', 'moderate', 'complex')
    assert 8 <= analysis.recommended_card_count <= 25


def test_card_count_bounds():
    assert calculate_optimal_card_count(10, 1, 1, []) == 8
    assert calculate_optimal_card_count(100_000, 5000, 500, []) == 25


def test_content_type_detection():
    slides = 'Lecture 3\nSlide 1\n- point one\n- point two\n- point three\n- point four\n- point five\n- point six\nSlide 2\nObjectives'
    assert detect_content_type(slides) == ContentType.LECTURE_SLIDES
    plain = 'Cats\n' + 'The cat sat on the warm mat near the window. ' * 6
    assert detect_content_type(plain) == ContentType.GENERAL_TEXT


def test_metadata_extraction():
    meta = extract_content_metadata('Written by: Dr. Smith\nSee page 12 and (2019) et al.')
    assert meta.author_info == ['Dr. Smith']
    assert 'page 12' in meta.page_numbers
    assert meta.element_count() > 0


def test_chunk_content_drops_small_pieces():
    paragraph = ('Cells are the basic unit of life and carry out many functions. ' * 40).strip()
    chunks = chunk_content('\n\n'.join([paragraph] * 6))
    assert len(chunks) >= 2
    assert all(len(c) >= 1500 for c in chunks)


def test_prompt_lists_card_count():
    prompt = build_flashcard_prompt('content', 7, difficulty='hard', language='fr', subject='Biology')
    assert 'Create exactly 7 flashcards' in prompt
    assert 'Write every question and answer in fr.' in prompt
    assert prompt.endswith('Start your response with [ and end with ]')


def test_generate_standard(mock_openai):
    result = generate_flashcards(LECTURE_NOTES, 5)
    assert len(result.flashcards) == 3
    assert result.metadata['chunked'] is False
    assert result.metadata['target_count'] == result.content_analysis.recommended_card_count
    assert result.metadata['tokens_used'] == 200
    assert 'processing_time' in result.metadata


def test_generate_chunked(mock_openai):
    paragraph = ('Photosynthesis converts light energy into chemical energy in plants. ' * 40).strip()
    content = '\n\n'.join([paragraph] * 6)
    result = generate_flashcards(content, 5)
    assert result.metadata['chunked'] is True
    assert result.metadata['chunks'] == len(mock_openai.calls)
    # identical cards from every chunk collapse to one set
    assert len(result.flashcards) == 3


def test_generate_requires_content(mock_openai):
    with pytest.raises(GeneratorValidationError):
        generate_flashcards('  ')
