"""Gemini chat-completion client with bounded retries."""
import logging
import time
from typing import Any, Callable, Optional

import httpx
from google import genai
from google.genai import types

from stockchat.config import Settings
from stockchat.errors import ModelUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 1500


class LanguageModel:
    """Thin wrapper over ``genai.Client`` shared by translator and narrator.

    Each call sends a system instruction and a single user turn. Transport
    and API errors are retried ``settings.llm_max_retries`` times with
    exponential backoff before ModelUnavailable is raised.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = settings.gemini_model
        self.max_retries = settings.llm_max_retries
        self.backoff_seconds = settings.llm_backoff_seconds
        self._sleep = sleep

        if client is None and settings.gemini_api_key:
            client = genai.Client(
                api_key=settings.gemini_api_key,
                http_options=types.HttpOptions(timeout=int(settings.llm_timeout_seconds * 1000)),
            )
        self._client = client

    def complete(
        self,
        system: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> str:
        if self._client is None:
            raise ModelUnavailable("GEMINI_API_KEY not configured")

        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=config,
                )
                return (response.text or "").strip()
            except (genai.errors.APIError, httpx.HTTPError) as e:
                last_error = e
                logger.warning(f"Gemini call failed (attempt {attempt + 1}/{self.max_retries}): {e}")
                if attempt + 1 < self.max_retries:
                    self._sleep(self.backoff_seconds * (2 ** attempt))

        logger.error(f"Gemini call failed after {self.max_retries} attempts: {last_error}")
        raise ModelUnavailable(f"LLM service error: {last_error}")
