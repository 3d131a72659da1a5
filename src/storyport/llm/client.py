"""LLM client wrapper using LiteLLM for multi-provider support."""

import json
import os
import re
from typing import Any, Optional

from litellm import completion
from tenacity import (
    retry,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
    retry_if_exception_type,
)

from storyport.config import get_settings
from storyport.formats.base import StoryportError

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class LLMError(StoryportError):
    """Error communicating with LLM provider."""

    pass


class LLMClient:
    """Unified LLM client using LiteLLM for provider-agnostic API calls."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 8192,
        api_key: Optional[str] = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            model: LiteLLM model string (e.g., "gemini/gemini-2.5-flash")
            api_base: Optional API base URL (for local LLMs)
            temperature: Sampling temperature (lower = more deterministic)
            max_tokens: Maximum tokens in response
            api_key: Key passed straight to the provider, overriding the
                environment
        """
        settings = get_settings()
        self.model = model or settings.default_model
        self.api_base = api_base
        self.temperature = temperature if temperature is not None else settings.llm_temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.max_retries = max(1, settings.max_retries)

        # Ensure API keys are set in environment for LiteLLM
        self._setup_api_keys(settings)

    def _setup_api_keys(self, settings) -> None:
        """Ensure API keys are available in environment for LiteLLM."""
        # LiteLLM expects GEMINI_API_KEY for Google AI Studio
        # Also accept GOOGLE_API_KEY as fallback
        if settings.gemini_api_key:
            os.environ["GEMINI_API_KEY"] = settings.gemini_api_key
        elif settings.google_api_key:
            os.environ["GEMINI_API_KEY"] = settings.google_api_key

        if settings.openai_api_key:
            os.environ["OPENAI_API_KEY"] = settings.openai_api_key

        if settings.anthropic_api_key:
            os.environ["ANTHROPIC_API_KEY"] = settings.anthropic_api_key

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((LLMError,)),
        reraise=True,
    )
    def _call_llm(self, text: str, system_prompt: str) -> str:
        """Make an LLM API call with retry logic."""
        try:
            response = completion(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
                api_base=self.api_base,
                api_key=self.api_key,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            if "rate_limit" in str(e).lower():
                raise LLMError(f"Rate limited: {e}") from e
            elif "api" in str(e).lower() or "connection" in str(e).lower():
                raise LLMError(f"API error: {e}") from e
            raise

        content = response.choices[0].message.content
        if content is None:
            raise LLMError("LLM returned empty response")
        return content

    def complete(self, text: str, system_prompt: str, token=None) -> str:
        """Send one system + user exchange and return the reply text.

        A cancelled ``token`` stops further retries; the last error is
        raised as usual.
        """
        stop = stop_after_attempt(self.max_retries)
        if token is not None:
            stop = stop | stop_when_event_set(token.event)
        call = self._call_llm.retry_with(stop=stop)
        return call(self, text, system_prompt)

    def complete_json(self, text: str, system_prompt: str, token=None) -> dict[str, Any]:
        """Send one exchange and parse the first JSON object in the reply.

        Raises:
            LLMError: The reply holds no parseable JSON object
        """
        response = self.complete(text, system_prompt, token).strip()

        # Clean response - remove markdown code blocks if present
        if response.startswith("```"):
            response = re.sub(r"^```(?:json)?\n?", "", response)
            response = re.sub(r"\n?```$", "", response)

        match = _JSON_OBJECT.search(response)
        if not match:
            raise LLMError("No JSON object found in LLM response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise LLMError(f"Invalid JSON in LLM response: {e}") from e
        if not isinstance(data, dict):
            raise LLMError("LLM response JSON is not an object")
        return data
