"""
LLM client for insight generation.

Wraps an OpenAI-compatible chat completion endpoint and walks an ordered list
of models: the first model that answers wins, the last failure is raised.
"""

import time
from typing import List, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import LLMError, ConfigurationError
from tracker_sync.core.logging_config import get_logger

logger = get_logger(__name__)


class LLMClient:
    """Chat completion client with ordered model fallback."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 models: Optional[List[str]] = None, client: Optional[AsyncOpenAI] = None):
        settings = get_settings()
        self.models = models or settings.llm_models_list
        self.temperature = settings.LLM_TEMPERATURE
        self.max_tokens = settings.LLM_MAX_TOKENS

        if not self.models:
            raise ConfigurationError("LLM_MODELS must name at least one model")

        if client is None:
            api_key = api_key or settings.OPENAI_API_KEY
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or settings.OPENAI_BASE_URL,
                timeout=settings.LLM_TIMEOUT_SECONDS,
                max_retries=0  # Fallback across models replaces SDK retries
            )
        self.client = client

    async def complete(self, system_prompt: str, user_prompt: str) -> Tuple[str, str]:
        """
        Run a chat completion, falling back through the configured models.

        Returns:
            (content, model) of the first successful answer

        Raises:
            LLMError: If every model failed
        """
        errors = []

        for model in self.models:
            start_time = time.time()
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=self.temperature,
                    max_tokens=self.max_tokens
                )
                content = response.choices[0].message.content if response.choices else None
                if not content:
                    raise LLMError(f"Model {model} returned an empty completion")

                logger.info(f"LLM completion from {model} in {time.time() - start_time:.2f}s")
                return content, model

            except (OpenAIError, LLMError) as e:
                logger.warning(f"LLM model {model} failed after {time.time() - start_time:.2f}s: {e}")
                errors.append(f"{model}: {e}")

        raise LLMError(f"All LLM models failed ({'; '.join(errors)})")
