import os
import time
from typing import List, Optional

import tenacity
from openai import OpenAI, APITimeoutError, OpenAIError
from pydantic import BaseModel

from neuroleaf.utils import get_logger, log_llm_call

LOG = get_logger()


# Exceptions
class LLMError(Exception):
    pass


class LLMAPIError(LLMError):
    pass


class LLMValidationError(LLMError):
    pass


class LLMTimeoutError(LLMError):
    pass


class LLMResult(BaseModel):
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    model: str
    duration_ms: int = 0


# Env
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_MAX_TOKENS = int(os.getenv('OPENAI_MAX_TOKENS', '4000'))
OPENAI_TEMPERATURE = float(os.getenv('OPENAI_TEMPERATURE', '0.3'))
OPENAI_TIMEOUT = float(os.getenv('OPENAI_TIMEOUT', '30'))
OPENAI_RETRY_ATTEMPTS = int(os.getenv('OPENAI_RETRY_ATTEMPTS', '3'))
OPENAI_RETRY_MULTIPLIER = float(os.getenv('OPENAI_RETRY_MULTIPLIER', '1'))
OPENAI_RETRY_MAX_WAIT = float(os.getenv('OPENAI_RETRY_MAX_WAIT', '10'))
MAX_PROMPT_CHARS = 100_000


class LLMClient:
    _instance = None

    def __init__(self):
        api_key = os.getenv('OPENAI_API_KEY')
        if not api_key:
            raise LLMError('OPENAI_API_KEY not set')
        self.model = os.getenv('OPENAI_MODEL', OPENAI_MODEL)
        self.timeout = OPENAI_TIMEOUT
        self.temperature = OPENAI_TEMPERATURE
        self._client = OpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        LOG.info('LLMClient initialized', extra={'model': self.model})

    @classmethod
    def get_instance(cls) -> 'LLMClient':
        if cls._instance is None:
            cls._instance = LLMClient()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        cls._instance = None

    def _estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        if 'gpt-4' in self.model:
            return (prompt_tokens + completion_tokens) / 1000.0 * 0.06
        return (prompt_tokens + completion_tokens) / 1000.0 * 0.002

    @tenacity.retry(stop=tenacity.stop_after_attempt(OPENAI_RETRY_ATTEMPTS),
                    wait=tenacity.wait_exponential(multiplier=OPENAI_RETRY_MULTIPLIER, min=1, max=OPENAI_RETRY_MAX_WAIT),
                    retry=tenacity.retry_if_exception_type((LLMAPIError, LLMTimeoutError)),
                    reraise=True)
    def _call_openai(self, messages: List[dict], max_tokens: int, temperature: float, request_id: Optional[str] = None) -> LLMResult:
        start = time.time()
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except APITimeoutError as e:
            LOG.exception('openai_timeout', exc_info=True)
            raise LLMTimeoutError(str(e)) from e
        except OpenAIError as e:
            LOG.exception('openai_error', exc_info=True)
            raise LLMAPIError(str(e)) from e
        duration = int((time.time() - start) * 1000)

        choices = getattr(resp, 'choices', None) or []
        text = choices[0].message.content if choices else None
        if not text:
            raise LLMAPIError('No response content received from the model')

        usage = getattr(resp, 'usage', None)
        prompt_tokens = getattr(usage, 'prompt_tokens', 0) or 0
        completion_tokens = getattr(usage, 'completion_tokens', 0) or 0
        cost = self._estimate_cost(prompt_tokens, completion_tokens)
        log_llm_call(request_id=request_id, duration_ms=duration, model=self.model, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, cost=cost)
        return LLMResult(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tokens_used=prompt_tokens + completion_tokens,
            estimated_cost=cost,
            model=self.model,
            duration_ms=duration,
        )

    def generate(self, prompt: str, max_tokens: Optional[int] = None, temperature: Optional[float] = None,
                 system_prompt: Optional[str] = None, request_id: Optional[str] = None) -> LLMResult:
        if not prompt or not prompt.strip():
            raise LLMValidationError('Prompt must not be empty')
        if len(prompt) > MAX_PROMPT_CHARS:
            raise LLMValidationError(f'Prompt exceeds {MAX_PROMPT_CHARS} characters')
        messages = []
        if system_prompt:
            messages.append({'role': 'system', 'content': system_prompt})
        messages.append({'role': 'user', 'content': prompt})
        return self._call_openai(
            messages,
            max_tokens=max_tokens or OPENAI_MAX_TOKENS,
            temperature=self.temperature if temperature is None else temperature,
            request_id=request_id,
        )


def generate_text(prompt: str, max_tokens: Optional[int] = None, request_id: Optional[str] = None) -> str:
    return LLMClient.get_instance().generate(prompt, max_tokens=max_tokens, request_id=request_id).text
