from typing import List, Optional

from pydantic import BaseModel

from neuroleaf.utils import get_logger
from .llm_client import LLMClient, LLMError
from .parsing import extract_json_object

LOG = get_logger()


class SampleAnswer(BaseModel):
    sample_answer: str
    key_points: List[str]
    structure: str


FALLBACK_SAMPLE_ANSWER = SampleAnswer(
    sample_answer=(
        'A comprehensive answer to this question would address the main concepts presented, provide specific '
        'examples to illustrate key points, and demonstrate clear understanding of the topic. The response should '
        'be well-organized, starting with an introduction to the topic, followed by detailed explanations of '
        'relevant concepts, and concluding with a summary that ties the ideas together.'
    ),
    key_points=[
        'Address all main concepts mentioned in the question',
        'Provide specific examples and evidence',
        'Use clear, logical organization',
        'Demonstrate deep understanding of the topic',
        'Connect ideas coherently',
    ],
    structure='Introduction → Main Points with Examples → Conclusion',
)

BULK_FAILURE_ANSWER = SampleAnswer(
    sample_answer='Sample answer generation failed. Please review the question and provide a comprehensive response.',
    key_points=['Address the main topic', 'Provide supporting details', 'Use clear explanations'],
    structure='Introduction → Main Content → Conclusion',
)


def build_sample_answer_prompt(question: str, context: str = '', difficulty: str = 'medium') -> str:
    context_line = f'Context: {context}\n' if context else ''
    return (
        'As an educational AI assistant, generate a comprehensive sample answer for the following question:\n\n'
        f'Question: {question}\n'
        f'{context_line}'
        f'Difficulty Level: {difficulty}\n\n'
        'Please provide:\n'
        '1. A well-structured sample answer that demonstrates what a good response should look like\n'
        '2. Key points that should be covered in a complete answer\n'
        '3. The recommended structure for answering this type of question\n\n'
        'Requirements:\n'
        '- The sample answer should be detailed but concise\n'
        '- Include specific examples where relevant\n'
        '- Use clear, educational language appropriate for the difficulty level\n'
        '- Focus on demonstrating proper reasoning and explanation techniques\n\n'
        'Format your response as JSON with the following structure:\n'
        '{\n'
        '  "sampleAnswer": "The comprehensive sample answer here...",\n'
        '  "keyPoints": ["Key point 1", "Key point 2", "Key point 3", ...],\n'
        '  "structure": "Recommended structure for answering this question..."\n'
        '}'
    )


def generate_sample_answer(question: str, context: str = '', difficulty: str = 'medium',
                           request_id: Optional[str] = None) -> SampleAnswer:
    try:
        result = LLMClient.get_instance().generate(build_sample_answer_prompt(question, context, difficulty), request_id=request_id)
        parsed = extract_json_object(result.text)
        if not parsed or not parsed.get('sampleAnswer') or not parsed.get('keyPoints') or not parsed.get('structure'):
            raise LLMError('Invalid response structure from AI provider')
        key_points = parsed['keyPoints'] if isinstance(parsed['keyPoints'], list) else [parsed['keyPoints']]
        return SampleAnswer(sample_answer=parsed['sampleAnswer'], key_points=[str(k) for k in key_points], structure=parsed['structure'])
    except LLMError as e:
        LOG.warning('sample_answer_fallback', extra={'error': str(e)})
        return FALLBACK_SAMPLE_ANSWER.model_copy(deep=True)


def generate_bulk_sample_answers(questions: List[str]) -> List[SampleAnswer]:
    results = []
    for i, question in enumerate(questions):
        try:
            results.append(generate_sample_answer(question))
        except Exception:
            LOG.exception('bulk_sample_answer_failed', exc_info=True, extra={'index': i})
            results.append(BULK_FAILURE_ANSWER.model_copy(deep=True))
    return results
