import pytest

from neuroleaf.test_mode import objective_grading as grading

OPTIONS = ['Nucleus', 'Mitochondria', 'Ribosome', 'Golgi apparatus']


@pytest.mark.parametrize('answer', ['B', '1', ' 1 '])
def test_multiple_choice_correct(answer):
    res = grading.grade_multiple_choice(answer, 1, OPTIONS)
    assert res.is_correct is True
    assert res.score == 100
    assert res.feedback == 'Correct! You selected "Mitochondria".'
    assert res.model_used == 'objective_grading_v1'


def test_multiple_choice_incorrect_with_explanation():
    res = grading.grade_multiple_choice('A', 1, OPTIONS, explanation='Mitochondria make ATP.')
    assert res.score == 0
    assert res.feedback == 'Incorrect. You selected "Nucleus" but the correct answer is "Mitochondria". Mitochondria make ATP.'


@pytest.mark.parametrize('answer', ['', 'banana', '-1'])
def test_multiple_choice_invalid(answer):
    res = grading.grade_multiple_choice(answer, 1, OPTIONS)
    assert res.is_correct is False
    assert res.feedback.startswith('Invalid answer format')


def test_multiple_choice_without_options():
    res = grading.grade_multiple_choice('3', 0)
    assert res.feedback == 'Incorrect. You selected "Option 4" but the correct answer is "Option 1".'


@pytest.mark.parametrize('answer,expected', [('true', True), ('Yes', True), ('f', False), ('0', False)])
def test_true_false(answer, expected):
    res = grading.grade_true_false(answer, expected)
    assert res.is_correct is True
    assert res.feedback == f"Correct! The statement is {'true' if expected else 'false'}."


def test_true_false_wrong_and_invalid():
    assert grading.grade_true_false('no', True).feedback == 'Incorrect. The statement is true, not false.'
    assert grading.grade_true_false('maybe', True).feedback.startswith('Invalid answer format')


def test_dispatch_by_question_type():
    assert grading.grade_objective_question('multiple_choice', 'C', 2, OPTIONS).is_correct
    assert grading.grade_objective_question('true_false', 'false', False).is_correct
    with pytest.raises(ValueError):
        grading.grade_objective_question('open_ended', 'x', None)


def test_can_grade_objectively():
    assert grading.can_grade_objectively('multiple_choice', 2) is True
    assert grading.can_grade_objectively('multiple_choice', True) is False
    assert grading.can_grade_objectively('true_false', False) is True
    assert grading.can_grade_objectively('true_false', 1) is False
    assert grading.can_grade_objectively('open_ended', 1) is False
    assert grading.can_grade_objectively(None, None) is False


def test_performance_summary():
    results = [grading.grade_true_false('true', True), grading.grade_true_false('true', False), grading.grade_true_false('t', True)]
    assert grading.generate_objective_performance_summary(results) == {
        'correct_count': 2, 'total_count': 3, 'percentage': 67, 'average_score': 67,
    }
    assert grading.generate_objective_performance_summary([])['percentage'] == 0
