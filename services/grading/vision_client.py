# services/grading/vision_client.py
from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import AzureOpenAI, OpenAI

from services.grading.parser import ParsedScores, ResponseParser

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENT = "gpt-4.1"
DEFAULT_API_VERSION = "2025-01-01-preview"
DEFAULT_TIMEOUT_S = 30.0

MAX_TOKENS = 800
TEMPERATURE = 0.7
IMAGE_DETAIL = "high"

# Not produced by the model; informational only.
PLACEHOLDER_CONFIDENCE = 0.9

SYSTEM_PROMPT = (
    "You work as a potato quality grader. You grade potatoes across two metrics: "
    "shininess and smoothness. Both are on a 1-5 scale and a combined grade which is "
    "a sum of the two is also assigned. Ignore the potatoes cut in half, only grade "
    "based on the skin finish of the whole potatoes.\n"
    "\n"
    "Your response MUST follow this format:\n"
    '1. Start with the shininess score as "Shininess: X/5" where X is the score\n'
    '2. Then provide the smoothness score as "Smoothness: X/5" where X is the score\n'
    '3. Calculate and provide the combined score as "Combined: X/10" where X is the sum\n'
    "4. Then provide a detailed analysis of the potato quality with specific observations"
)
USER_PROMPT = "Grade this potato image:"


class GradingError(RuntimeError):
    """Base for vision-model failures. Messages are safe to show to callers."""

    message = "Failed to process image. Please try again."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class GradingTimeout(GradingError):
    message = "Request timed out. Please try with a smaller image."


class GradingRateLimited(GradingError):
    message = "Rate limit exceeded. Please try again later."


class GradingAuthFailure(GradingError):
    message = "Authentication error with the vision service."


class EmptyGradingResponse(GradingError):
    message = "No grading result received from API."


class GradingFailed(GradingError):
    pass


@dataclass(frozen=True)
class VisionGraderConfig:
    provider: str = "azure"
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    deployment: str = DEFAULT_DEPLOYMENT
    api_version: str = DEFAULT_API_VERSION
    timeout_s: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class GradingOutcome:
    shininess: int
    smoothness: int
    combined: int
    raw_text: str
    confidence: float
    model_version: str
    processing_time_ms: int
    combined_source: str


def image_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def build_openai_client(config: VisionGraderConfig) -> Any:
    """Single-attempt client: the SDK's own retries are disabled."""
    if config.provider == "openai":
        return OpenAI(api_key=config.api_key, timeout=config.timeout_s, max_retries=0)
    return AzureOpenAI(
        azure_endpoint=config.endpoint,
        api_key=config.api_key,
        api_version=config.api_version,
        azure_deployment=config.deployment,
        timeout=config.timeout_s,
        max_retries=0,
    )


class VisionGrader:
    """
    Thin chat-completions wrapper for potato grading.
    Contract:
      - Input: raw image bytes + MIME type (already validated)
      - Output: GradingOutcome with parsed scores and the full reply text
      - Raises a GradingError subclass on any provider-side failure
    """

    def __init__(
        self,
        config: Optional[VisionGraderConfig] = None,
        *,
        client: Any = None,
        parser: Optional[ResponseParser] = None,
    ) -> None:
        self.config = config or VisionGraderConfig()
        self._client = client
        self.parser = parser or ResponseParser()

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_openai_client(self.config)
        return self._client

    def grade(self, data: bytes, mime_type: str) -> GradingOutcome:
        started = time.perf_counter()
        content = self._complete(self._build_messages(data, mime_type))
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        scores: ParsedScores = self.parser.parse(content)
        if not scores.complete:
            logger.warning(
                "grader reply missing score lines (shininess=%s smoothness=%s)",
                scores.shininess_found,
                scores.smoothness_found,
            )

        return GradingOutcome(
            shininess=scores.shininess,
            smoothness=scores.smoothness,
            combined=scores.combined,
            raw_text=content,
            confidence=PLACEHOLDER_CONFIDENCE,
            model_version=self.config.deployment,
            processing_time_ms=elapsed_ms,
            combined_source=scores.combined_source,
        )

    def _build_messages(self, data: bytes, mime_type: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": image_data_url(data, mime_type), "detail": IMAGE_DETAIL},
                    },
                ],
            },
        ]

    def _complete(self, messages: List[Dict[str, Any]]) -> str:
        try:
            resp = self.client.chat.completions.create(
                model=self.config.deployment,
                messages=messages,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                top_p=1,
                frequency_penalty=0,
                presence_penalty=0,
            )
        except openai.APITimeoutError as e:
            logger.error("vision request timed out after %.1fs", self.config.timeout_s)
            raise GradingTimeout(str(e)) from e
        except openai.RateLimitError as e:
            logger.error("vision request rate limited: %s", e)
            raise GradingRateLimited(str(e)) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error("vision service rejected credentials: %s", e)
            raise GradingAuthFailure(str(e)) from e
        except openai.OpenAIError as e:
            logger.exception("vision request failed")
            raise GradingFailed(str(e)) from e

        choices = getattr(resp, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not isinstance(content, str) or not content.strip():
            logger.error("empty response from vision model")
            raise EmptyGradingResponse()
        return content
