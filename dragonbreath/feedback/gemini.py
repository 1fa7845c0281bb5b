"""
Remote feedback via a hosted text-generation model.

Sends the session statistics to the Gemini generateContent REST API
and returns the model's answer. Any failure falls back to the local
template message.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dragonbreath.core.config import FeedbackConfig
from dragonbreath.core.stats import SessionStats
from dragonbreath.feedback.base import BaseFeedbackGenerator
from dragonbreath.feedback.template import TemplateFeedbackGenerator

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """\
You are an epic Dragon Keeper in a fantasy world.
A user (an aspiring dragon) has just completed a pursed-lip breathing exercise session.

Stats:
- Total Fire Breaths: {total_breaths}
- Longest Flame Duration: {max_duration:.1f} seconds
- Average Flame Intensity: {avg_intensity_pct:.0f}%

Give them brief, motivating feedback in the style of a wise fantasy mentor.
If they held their breath for long durations (>{epic_seconds:.0f}s), praise their "Roaring Fire".
If short breaths, encourage them to "Stoke the embers".
Keep it under 2 sentences.
"""


def build_prompt(stats: SessionStats, epic_seconds: float = 4.0) -> str:
    """Describe a session to the model."""
    return PROMPT_TEMPLATE.format(
        total_breaths=stats.total_breaths,
        max_duration=stats.max_duration,
        avg_intensity_pct=stats.avg_intensity * 100,
        epic_seconds=epic_seconds,
    )


class GeminiFeedbackGenerator(BaseFeedbackGenerator):
    """
    Feedback written by a Gemini model.

    Without an API key the generator never touches the network and
    answers with the template message.
    """

    def __init__(
        self,
        config: FeedbackConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize generator.

        Args:
            config: Feedback configuration (API key, model, timeout)
            transport: Optional httpx transport, for tests
        """
        self._config = config or FeedbackConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._fallback = TemplateFeedbackGenerator(self._config.epic_breath_seconds)

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def configured(self) -> bool:
        return bool(self._config.api_key)

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.api_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )
        logger.info(f"Gemini feedback started with model: {self._config.model}")

    async def stop(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def generate(self, stats: SessionStats) -> str:
        """
        Ask the model for feedback.

        Args:
            stats: Final session statistics

        Returns:
            Model text, or the template message on any failure
        """
        if not self.configured:
            logger.debug("No Gemini API key configured, using template feedback")
            return self._fallback.render(stats)

        if not self._client:
            logger.error("HTTP client not initialized")
            return self._fallback.render(stats)

        payload = {
            "contents": [
                {"parts": [{"text": build_prompt(stats, self._config.epic_breath_seconds)}]}
            ],
        }

        try:
            response = await self._client.post(
                f"/models/{self._config.model}:generateContent",
                params={"key": self._config.api_key},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            return self._fallback.render(stats)

        if response.status_code != 200:
            logger.error(f"Gemini API error: {response.status_code} - {response.text}")
            return self._fallback.render(stats)

        try:
            text = self._extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected Gemini response: {e}")
            return self._fallback.render(stats)

        if not text:
            logger.warning("Gemini returned no text, using template feedback")
            return self._fallback.render(stats)

        return text

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts).strip()


def create_feedback_generator(config: FeedbackConfig | None = None) -> BaseFeedbackGenerator:
    """Build the generator selected in the feedback configuration."""
    config = config or FeedbackConfig()

    if config.provider == "gemini":
        return GeminiFeedbackGenerator(config)
    return TemplateFeedbackGenerator(config.epic_breath_seconds)
