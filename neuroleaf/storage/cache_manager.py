import os
import json
import hashlib
from typing import Optional, Dict, Any, List

from neuroleaf.utils import get_logger

LOG = get_logger()


class CacheManager:
    """Redis-backed cache for generated test questions.

    Falls back to a disabled cache when Redis is unreachable.
    """
    _instance = None

    def __init__(self):
        import redis
        host = os.getenv('REDIS_HOST', 'redis')
        port = int(os.getenv('REDIS_PORT', '6379'))
        password = os.getenv('REDIS_PASSWORD') or None
        self.enabled = os.getenv('REDIS_CACHE_ENABLED', 'true').lower() in ('1', 'true', 'yes')
        self.ttl = int(os.getenv('REDIS_CACHE_TTL', '3600'))
        self._client = None
        if not self.enabled:
            LOG.info('redis_cache_disabled')
            return
        try:
            self._client = redis.Redis(host=host, port=port, password=password, decode_responses=True)
            self._client.ping()
            LOG.info('redis_cache_connected', extra={'host': host, 'port': port})
        except Exception as e:
            LOG.warning('redis_cache_unavailable', extra={'error': str(e)})
            self.enabled = False

    @classmethod
    def get_instance(cls) -> 'CacheManager':
        if cls._instance is None:
            cls._instance = CacheManager()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        cls._instance = None

    def _key(self, flashcards: List[Dict[str, Any]], question_count: int, difficulty: str) -> str:
        cards = [{'front': c.get('front_content', ''), 'back': c.get('back_content', '')} for c in flashcards]
        j = json.dumps({'cards': cards, 'count': question_count, 'difficulty': difficulty}, sort_keys=True)
        h = hashlib.sha256(j.encode()).hexdigest()[:16]
        return f"questions:{h}:{difficulty}"

    def get_questions(self, flashcards: List[Dict[str, Any]], question_count: int, difficulty: str) -> Optional[List[Dict[str, Any]]]:
        if not self.enabled or not self._client:
            return None
        key = self._key(flashcards, question_count, difficulty)
        try:
            val = self._client.get(key)
            if val is None:
                LOG.info('cache_miss', extra={'key': key})
                return None
            LOG.info('cache_hit', extra={'key': key})
            return json.loads(val)
        except Exception as e:
            LOG.warning('cache_get_failed', extra={'error': str(e)})
            return None

    def set_questions(self, flashcards: List[Dict[str, Any]], question_count: int, difficulty: str, questions: List[Dict[str, Any]], ttl: Optional[int] = None):
        if not self.enabled or not self._client:
            return
        key = self._key(flashcards, question_count, difficulty)
        ttl = ttl or self.ttl
        try:
            self._client.setex(key, ttl, json.dumps(questions))
            LOG.info('cache_set', extra={'key': key, 'ttl': ttl})
        except Exception as e:
            LOG.warning('cache_set_failed', extra={'error': str(e)})

    def health_check(self) -> str:
        if not self.enabled or not self._client:
            return 'error: redis cache disabled'
        try:
            self._client.ping()
            return 'ok'
        except Exception as e:
            return f'error: {str(e)}'
