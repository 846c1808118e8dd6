from datetime import timedelta

import pytest

from neuroleaf.decks import CreateDeckData, create_deck
from neuroleaf.storage import get_db
from neuroleaf.test_mode import test_history_service as history
from neuroleaf.test_mode import test_session_service as sessions
from neuroleaf.test_mode.schemas import CreateTestSessionData
from neuroleaf.utils import utcnow


def _completed(deck, account, score, when=None, questions=3, seconds=60):
    session = sessions.create_test_session(
        CreateTestSessionData(deck_id=deck['id'], test_mode='flashcard', total_questions=questions), account['id'])
    completed_at = (when or utcnow()).isoformat()
    get_db().execute(
        "UPDATE test_sessions SET status = 'completed', average_score = ?, questions_completed = ?, "
        'time_spent_seconds = ?, completed_at = ? WHERE id = ?',
        (score, questions, seconds, completed_at, session['id']))
    return session


def _grade(text, score):
    return {'question_text': text, 'user_response': 'answer', 'ai_score': score, 'ai_feedback': 'ok',
            'is_correct': score >= 60, 'question_type': 'open_ended', 'grading_method': 'ai_grading'}


def test_save_complete_session_replaces_responses(deck, account):
    session = sessions.create_test_session(
        CreateTestSessionData(deck_id=deck['id'], test_mode='ai_questions', total_questions=2), account['id'])
    data = history.SaveTestHistoryData(
        session_id=session['id'],
        questions=[{'question': 'Q1'}, {'question': 'Q2'}],
        results={'individual_grades': [_grade('Q1', 90), _grade('Q2', 40)], 'overall_feedback': 'Fine', 'average_score': 65},
    )
    assert history.save_complete_test_session(account['id'], data) is True
    assert history.save_complete_test_session(account['id'], data) is True

    details = history.get_test_session_details(session['id'], account['id'])
    assert details['status'] == 'completed'
    assert details['average_score'] == 65
    assert details['questions_completed'] == 2
    assert details['test_questions'] == [{'question': 'Q1'}, {'question': 'Q2'}]
    assert [r['question_text'] for r in details['responses']] == ['Q1', 'Q2']
    assert details['responses'][1]['is_correct'] is False


def test_save_for_foreign_session_rejected(deck, account):
    with pytest.raises(history.TestHistoryNotFoundError):
        history.save_complete_test_session(account['id'], history.SaveTestHistoryData(session_id='missing', results={}))


def test_history_lists_completed_only(deck, account):
    done = _completed(deck, account, 70)
    sessions.create_test_session(CreateTestSessionData(deck_id=deck['id'], test_mode='flashcard', total_questions=1), account['id'])
    listed = history.get_user_test_history(account['id'])
    assert [s['id'] for s in listed] == [done['id']]
    assert listed[0]['deck_name'] == 'Biology 101'
    assert history.get_test_session_details('missing', account['id']) is None


def test_statistics(deck, account):
    _completed(deck, account, 60, seconds=30)
    _completed(deck, account, 90, seconds=90)
    _completed(deck, account, 0)
    stats = history.get_test_statistics(account['id'])
    assert stats['total_tests'] == 3
    assert stats['average_score'] == 75
    assert stats['best_score'] == 90
    assert stats['total_time_spent'] == 180
    assert stats['questions_answered'] == 9
    assert len(stats['recent_tests']) == 3


def test_statistics_empty(account):
    assert history.get_test_statistics(account['id'])['total_tests'] == 0


def test_statistics_by_deck(deck, account):
    other = create_deck(CreateDeckData(name='Chemistry'), account['id'])
    _completed(deck, account, 50)
    _completed(other, account, 100)
    assert history.get_test_statistics(account['id'], other['id'])['average_score'] == 100
    assert [s['deck_id'] for s in history.get_deck_test_history(account['id'], deck['id'])] == [deck['id']]


def test_performance_trends(deck, account):
    now = utcnow()
    _completed(deck, account, 60, when=now - timedelta(days=2))
    _completed(deck, account, 80, when=now - timedelta(days=2))
    _completed(deck, account, 90, when=now)
    _completed(deck, account, 100, when=now - timedelta(days=60))
    trends = history.get_performance_trends(account['id'])
    assert [t['score'] for t in trends] == [70, 90]
    assert trends[0]['questions'] == 6
    assert trends[0]['date'] < trends[1]['date']


def test_delete_session(deck, account):
    done = _completed(deck, account, 70)
    assert history.delete_test_session(done['id'], account['id']) is True
    assert history.get_user_test_history(account['id']) == []
    with pytest.raises(history.TestHistoryNotFoundError):
        history.delete_test_session(done['id'], account['id'])
