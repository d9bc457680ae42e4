"""Narrative generator client for an OpenAI-compatible chat API."""
from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

JSON_SYSTEM_PROMPT = (
    "You write short decision events for an academic career management game. "
    "Reply with a single JSON object and nothing else."
)


class LLMGenerationError(RuntimeError):
    """Raised when the generator cannot produce usable content."""


class LLMNotEnabledError(LLMGenerationError):
    """Raised when the generator client is disabled or in mock mode."""


class SafetyLevel(Enum):
    """Content safety levels for moderation."""
    SAFE = "safe"
    MINOR_CONCERN = "minor_concern"
    BLOCKED = "blocked"


@dataclass
class LLMConfig:
    """Configuration for the generator client."""
    api_base: str = "http://localhost:5000/v1"
    api_key: str = "not-needed-for-local"
    model_name: str = "local-model"
    temperature: float = 0.8
    max_tokens: int = 900
    timeout: int = 30
    retry_attempts: int = 2
    max_concurrent: int = 4
    safety_enabled: bool = True
    mock_mode: bool = False
    retry_schedule: Optional[List[float]] = None

    @classmethod
    def from_env(cls) -> 'LLMConfig':
        """Load configuration from environment variables."""
        mock_mode = os.getenv("LLM_MODE", "").lower() == "mock"
        schedule_env = os.getenv("LLM_RETRY_SCHEDULE")
        retry_schedule: Optional[List[float]] = None
        if schedule_env:
            try:
                retry_schedule = [float(item.strip()) for item in schedule_env.split(",") if item.strip()]
            except ValueError:
                logger.warning("Invalid LLM_RETRY_SCHEDULE value: %s", schedule_env)
                retry_schedule = None

        return cls(
            api_base=os.getenv("LLM_API_BASE", "http://localhost:5000/v1"),
            api_key=os.getenv("LLM_API_KEY", "not-needed-for-local"),
            model_name=os.getenv("LLM_MODEL_NAME", "local-model"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.8")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "900")),
            timeout=int(os.getenv("LLM_TIMEOUT", "30")),
            retry_attempts=int(os.getenv("LLM_RETRY_ATTEMPTS", "2")),
            max_concurrent=int(os.getenv("LLM_MAX_CONCURRENT", "4")),
            safety_enabled=os.getenv("LLM_SAFETY_ENABLED", "true").lower() == "true",
            mock_mode=mock_mode,
            retry_schedule=retry_schedule,
        )


class ContentModerator:
    """Keyword screen applied to generated decision text."""

    def __init__(self):
        self.blocked_words = ["suicide", "self-harm", "racist", "terrorist"]
        self.warning_phrases = ["harassment", "plagiarism ring", "bribe"]

    def check_content(self, text: str) -> SafetyLevel:
        text_lower = text.lower()
        for word in self.blocked_words:
            if word in text_lower:
                return SafetyLevel.BLOCKED
        if any(phrase in text_lower for phrase in self.warning_phrases):
            return SafetyLevel.MINOR_CONCERN
        return SafetyLevel.SAFE


class LLMClient:
    """OpenAI-compatible client returning raw JSON text for decision payloads."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig.from_env()
        self.moderator = ContentModerator() if self.config.safety_enabled else None
        self._executor = ThreadPoolExecutor(max_workers=max(1, self.config.max_concurrent))
        self._retry_schedule = self.config.retry_schedule or [1.0, 3.0, 10.0]
        self.enabled = True

        if self.config.mock_mode:
            self.openai = None
            self.client = None
            logger.info("LLM client initialised in mock mode")
            return

        try:
            import openai
            self.openai = openai
            self.client = openai.OpenAI(
                api_key=self.config.api_key,
                base_url=self.config.api_base,
                timeout=self.config.timeout
            )
            logger.info("LLM client initialised with base URL: %s", self.config.api_base)
        except ImportError:
            logger.warning("OpenAI library not installed. Generated events will use local templates.")
            self.openai = None
            self.client = None
            self.enabled = False

    async def generate_json_text(self, user_prompt: str, system_prompt: str = JSON_SYSTEM_PROMPT) -> str:
        """Return the generator's raw reply for a JSON-producing prompt.

        Raises :class:`LLMNotEnabledError` in mock mode or without the client
        library, and :class:`LLMGenerationError` when retries are exhausted or
        the reply is blocked by moderation.
        """
        if self.config.mock_mode or not self.enabled:
            raise LLMNotEnabledError("LLM client is disabled")

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        response = await self._call_with_retry(messages)
        if response is None:
            raise LLMGenerationError("LLM call exhausted retries")

        try:
            text = (response.choices[0].message.content or "").strip()
        except (IndexError, AttributeError, TypeError) as exc:
            raise LLMGenerationError(f"LLM returned a malformed response: {exc}") from exc
        if not text:
            raise LLMGenerationError("LLM returned an empty reply")
        if self.moderator:
            safety = self.moderator.check_content(text)
            if safety == SafetyLevel.BLOCKED:
                logger.warning("Generated content blocked for safety: %s...", text[:50])
                raise LLMGenerationError("Generated content blocked by moderator")
            if safety == SafetyLevel.MINOR_CONCERN:
                logger.info("Content passed with %s: %s...", safety.value, text[:50])
        return text

    async def _call_with_retry(self, messages: List[Dict[str, str]]) -> Optional[Any]:
        """Make API call with retry logic."""
        attempts = max(1, self.config.retry_attempts)
        loop = asyncio.get_running_loop()
        for attempt in range(attempts):
            try:
                return await loop.run_in_executor(
                    self._executor,
                    lambda: self.client.chat.completions.create(
                        model=self.config.model_name,
                        messages=messages,
                        temperature=self.config.temperature,
                        max_tokens=self.config.max_tokens,
                    ),
                )
            except Exception as e:
                logger.warning("LLM API call attempt %s failed: %s", attempt + 1, e)
                if attempt < attempts - 1:
                    delay = self._retry_schedule[min(attempt, len(self._retry_schedule) - 1)]
                    await asyncio.sleep(delay)
        logger.error("All retry attempts exhausted for LLM call")
        return None

    def close(self):
        """Clean up resources."""
        self._executor.shutdown(wait=True)


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create singleton LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


__all__ = [
    "ContentModerator",
    "JSON_SYSTEM_PROMPT",
    "LLMClient",
    "LLMConfig",
    "LLMGenerationError",
    "LLMNotEnabledError",
    "SafetyLevel",
    "get_llm_client",
]
