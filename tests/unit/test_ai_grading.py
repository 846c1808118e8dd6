from neuroleaf.test_mode import ai_grading


def test_parse_grading_json_clamps_score():
    res = ai_grading.parse_grading_response('{"score": 140, "feedback": "Great", "is_correct": true}')
    assert res == {'score': 100, 'feedback': 'Great', 'is_correct': True}


def test_parse_grading_free_text_uses_score_hint():
    res = ai_grading.parse_grading_response('Score: 75. Mostly right.')
    assert res['score'] == 75
    assert res['is_correct'] is True
    assert res['feedback'] == 'Score: 75. Mostly right.'


def test_parse_grading_empty():
    assert ai_grading.parse_grading_response('') == {'score': 0, 'feedback': 'Unable to process response.', 'is_correct': False}


def test_parse_comprehensive_defaults():
    res = ai_grading.parse_comprehensive_response('{"score": 65, "feedback": "ok", "topic_analysis": [{"performance": "amazing"}]}')
    topic = res['topic_analysis'][0]
    assert topic.topic == 'Unknown Topic'
    assert topic.performance == 'fair'
    assert res['improvement_suggestions'] == ['Review the material and practice more']
    assert res['confidence_level'] == 50


def test_parse_comprehensive_without_topics():
    res = ai_grading.parse_comprehensive_response('{"score": 85, "feedback": "good"}')
    assert res['topic_analysis'][0].topic == 'General Knowledge'
    assert res['topic_analysis'][0].performance == 'good'


def test_parse_comprehensive_free_text():
    res = ai_grading.parse_comprehensive_response('Overall score: 40, needs work')
    assert res['score'] == 40
    assert res['confidence_level'] == 30
    assert res['topic_analysis'][0].strengths == []


def test_fallback_grading():
    assert ai_grading.fallback_grading('x', '').feedback == 'No response provided.'
    assert ai_grading.fallback_grading(None, 'something').score == 50
    exact = ai_grading.fallback_grading('light energy to glucose', 'Light energy to glucose')
    assert exact.score == 100
    assert exact.is_correct is True
    assert exact.model_used == 'fallback'
    assert ai_grading.fallback_grading('light energy to glucose', 'dogs bark').is_correct is False


def test_grade_response_with_llm(mock_openai):
    res = ai_grading.grade_response('What is photosynthesis?', 'Light to energy', 'Plants use light')
    assert res.score == 85
    assert res.is_correct is True
    assert res.model_used == 'gpt-4o-mini'
    assert "grading a student's response" in mock_openai.prompts()[0]


def test_grade_response_falls_back_without_llm():
    res = ai_grading.grade_response('Q', 'plants use light', 'plants use light')
    assert res.model_used == 'fallback'
    assert res.score == 100


def test_grade_response_comprehensive(mock_openai):
    res = ai_grading.grade_response_comprehensive('What is photosynthesis?', 'Light to energy', 'Plants use light')
    assert res.score == 78
    assert res.topic_analysis[0].topic == 'Photosynthesis'
    assert len(res.improvement_suggestions) == 3
    assert res.confidence_level == 85


def test_grade_response_comprehensive_fallback():
    res = ai_grading.grade_response_comprehensive('Q', 'plants use light', 'plants use light')
    assert res.model_used == 'fallback'
    assert res.reasoning_chain == ['Fallback analysis due to service error']
    assert res.topic_analysis[0].strengths == ['Shows basic understanding']


def _results(percentage, grade, weaknesses=None, strengths=None):
    return {
        'overall_analysis': {
            'overall_grade': grade,
            'overall_percentage': percentage,
            'grade_explanation': 'Summary',
            'strengths_summary': strengths or [],
            'weaknesses_summary': weaknesses or [],
            'topic_breakdown': [{'topic': 'Cells', 'performance': 'good'}, {'topic': 'Energy', 'performance': 'poor'}],
            'priority_study_areas': ['a', 'b', 'c', 'd'],
            'improvement_recommendations': ['1', '2', '3', '4', '5'],
            'study_plan_suggestions': [],
            'confidence_assessment': 70,
        },
        'individual_questions': [{'individual_score': 90}, {'individual_score': 40}],
    }


def test_progressive_disclosure():
    out = ai_grading.transform_to_progressive_disclosure(_results(82, 'B', weaknesses=['Energy']))
    h = out['feedback_hierarchy']
    assert h['primary']['key_insight'] == 'Strong performance with room to excel in Energy'
    assert h['primary']['celebration_message'] in ai_grading.CELEBRATION_MESSAGES['B']
    assert h['at_glance']['primary_improvement'] == 'Energy'
    assert h['at_glance']['quick_stats'] == {'strong_answers': 1, 'total_questions': 2, 'confidence_level': 70}
    assert h['topics']['topic_summary'] == 'Good grasp of 1 concepts. 1 areas need attention.'
    assert len(h['growth_plan']['priority_areas']) == 3
    assert len(h['growth_plan']['action_steps']) == 4
    assert 'overall_analysis' in out


def test_key_insight_bands():
    assert ai_grading.extract_key_insight({'overall_percentage': 95}) == 'Excellent mastery demonstrated across all areas!'
    assert ai_grading.extract_key_insight({'overall_percentage': 40, 'strengths_summary': ['Cells']}) == 'Great effort! Build confidence with Cells'


def test_topic_summary_edge_cases():
    assert ai_grading.topic_summary([]) == 'Assessment completed successfully.'
    assert ai_grading.topic_summary([{'performance': 'poor'}]) == '1 topics reviewed. Focus on strengthening fundamental understanding.'


def test_parse_grading_malformed_json_is_an_error():
    res = ai_grading.parse_grading_response('{score: 85, feedback: "looks right", is_correct: true}')
    assert res == {'score': 0, 'feedback': 'Error processing AI response. Please try again.', 'is_correct': False}


def test_parse_grading_coerces_feedback_list():
    res = ai_grading.parse_grading_response('{"score": 70, "feedback": ["Good start.", "Mention glucose."], "is_correct": true}')
    assert res == {'score': 70, 'feedback': 'Good start. Mention glucose.', 'is_correct': True}


def test_parse_comprehensive_malformed_json_is_an_error():
    res = ai_grading.parse_comprehensive_response('{"score": 80, "feedback": "ok",}')
    assert res['score'] == 0
    assert res['confidence_level'] == 0
    assert res['topic_analysis'][0].topic == 'Error Analysis'


def test_parse_comprehensive_coerces_field_types():
    res = ai_grading.parse_comprehensive_response(
        '{"score": 80, "feedback": ["ok"], "topic_analysis": [{"topic": 7, "strengths": "many"}], '
        '"improvement_suggestions": "read more"}')
    assert res['feedback'] == 'ok'
    assert res['topic_analysis'][0].topic == '7'
    assert res['topic_analysis'][0].strengths == []
    assert res['improvement_suggestions'] == ['Review the material and practice more']


def test_grade_response_with_list_feedback(mock_openai):
    mock_openai.responses.append('{"score": 70, "feedback": ["a"], "is_correct": true}')
    res = ai_grading.grade_response('Q', 'plants use light', 'plants use light')
    assert res.score == 70
    assert res.feedback == 'a'
    assert res.model_used == 'gpt-4o-mini'


def test_grade_response_invalid_result_falls_back(mock_openai, monkeypatch):
    monkeypatch.setattr(ai_grading, 'parse_grading_response',
                        lambda text: {'score': 'high', 'feedback': 'x', 'is_correct': True})
    res = ai_grading.grade_response('Q', 'plants use light', 'plants use light')
    assert res.model_used == 'fallback'
    assert res.score == 100


def test_grade_response_comprehensive_invalid_result_falls_back(mock_openai, monkeypatch):
    monkeypatch.setattr(ai_grading, 'parse_comprehensive_response',
                        lambda text: {'score': 80, 'feedback': 'ok', 'is_correct': True, 'topic_analysis': 'none'})
    res = ai_grading.grade_response_comprehensive('Q', 'plants use light', 'plants use light')
    assert res.model_used == 'fallback'
    assert res.reasoning_chain == ['Fallback analysis due to service error']
    assert len(mock_openai.calls) == 1
