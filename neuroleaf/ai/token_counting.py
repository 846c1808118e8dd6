import math
from typing import Dict, List, Any


def _estimate(text: str) -> int:
    if not text or not text.strip():
        return 0
    # roughly 4 characters per token for English text
    return math.ceil(len(text) / 4)


def count_tokens(text: str) -> Dict[str, Any]:
    text = text or ''
    return {'token_count': _estimate(text), 'character_count': len(text), 'method': 'estimated'}


def count_tokens_for_texts(texts: List[str]) -> Dict[str, Any]:
    return count_tokens('\n\n'.join(texts))


def format_token_count(token_count: int) -> str:
    if token_count >= 1_000_000:
        return f'{token_count / 1_000_000:.1f}M tokens'
    if token_count >= 1000:
        return f'{token_count / 1000:.1f}k tokens'
    return f'{token_count} tokens'


def quick_estimate(text: str) -> int:
    return _estimate(text)
