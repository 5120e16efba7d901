"""
Verification orchestrator.

Evidence is judged by an ordered list of AI judge providers. The first one that
returns a parsable verdict decides; a failure (exception, timeout, malformed
output) moves on to the next. When every provider has failed the result is an
undecided verdict, which the completion coordinator turns into "pending manual
review" rather than a rejection.

Providers enforce their own request timeouts; nothing here retries or waits.
"""

import json
import logging
import math
import re
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from exceptions import ProviderError, RequestValidationError
from image_utils import fetch_evidence_image

logger = logging.getLogger(__name__)

UNAVAILABLE_REASONING = (
    "Automatic verification is currently unavailable. "
    "Your submission has been saved and is pending manual review."
)

_JSON_OBJECT = re.compile(r'\{[\s\S]*\}')


class Verdict(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    confidence: float = Field(ge=0, le=100)
    reasoning: str
    detected_elements: List[str] = []
    suggestions: Optional[List[str]] = None
    # Name of the provider that decided; None when no provider could.
    judged_by: Optional[str] = None

    @property
    def is_decided(self) -> bool:
        return self.judged_by is not None


def undecided_verdict() -> Verdict:
    return Verdict(is_valid=False, confidence=0, reasoning=UNAVAILABLE_REASONING)


class JudgeProvider(Protocol):
    name: str

    def judge(self, image_bytes: bytes, prompt: str) -> str:
        """Return the provider's raw text answer or raise ProviderError."""
        ...


def build_verification_prompt(mission_title, mission_description, criteria, note=None):
    if criteria:
        criteria_block = "\n".join(f"{index}. {criterion}" for index, criterion in enumerate(criteria, start=1))
    else:
        criteria_block = "1. The image shows genuine completion of the mission described above"

    note_block = f'\nThe user added this note to the submission: "{note}"\n' if note else ""

    return f"""You are an expert image verification system for an environmental mission app.

Mission: "{mission_title}"
Description: "{mission_description}"
{note_block}
Verification Criteria (Any ONE of these criteria being met is sufficient for approval):
{criteria_block}

IMPORTANT: This mission should be APPROVED if the image shows ANY ONE of the above criteria being met.
You do not need to see ALL criteria. Just ONE is enough for approval.

Approval Guidelines:
- APPROVE if you can identify ANY ONE verification criterion being met
- APPROVE if the image shows genuine environmental effort, even if not perfect
- REJECT only if the image is clearly fake, staged, or unrelated to the mission

Respond with ONLY a JSON object in this exact format:
{{
  "isValid": boolean,
  "confidence": number (0-100),
  "reasoning": "detailed explanation of your assessment",
  "detectedElements": ["list", "of", "detected", "elements"],
  "suggestions": ["optional", "improvement", "suggestions"]
}}"""


def clamp_confidence(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(100.0, max(0.0, number))


def parse_verdict(raw_text) -> Verdict:
    """
    Extract the JSON object embedded in a judge's answer. Anything that is not
    an object with a boolean isValid is a ProviderError, never an approval.
    """
    match = _JSON_OBJECT.search(raw_text or "")
    if not match:
        raise ProviderError("No JSON object found in judge response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ProviderError(f"Judge response is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("isValid"), bool):
        raise ProviderError("Judge response lacks a boolean isValid")

    detected = data.get("detectedElements")
    suggestions = data.get("suggestions")
    return Verdict(
        is_valid=data["isValid"],
        confidence=clamp_confidence(data.get("confidence")),
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
        detected_elements=[str(item) for item in detected] if isinstance(detected, list) else [],
        suggestions=[str(item) for item in suggestions] if isinstance(suggestions, list) else None,
    )


class VerificationOrchestrator:
    def __init__(self, providers: Sequence[JudgeProvider], image_fetcher=fetch_evidence_image, fetch_timeout=10):
        self.providers = list(providers)
        self.image_fetcher = image_fetcher
        self.fetch_timeout = fetch_timeout

    @property
    def provider_names(self):
        return [provider.name for provider in self.providers]

    def verify(self, mission_title, mission_description, criteria, evidence_image_urls, note=None) -> Verdict:
        if not evidence_image_urls:
            raise RequestValidationError("At least one evidence image is required")

        prompt = build_verification_prompt(mission_title, mission_description, criteria, note)

        # Every provider judges the same first image.
        try:
            image_bytes = self.image_fetcher(evidence_image_urls[0], timeout=self.fetch_timeout)
        except ProviderError as e:
            logger.error(f"Evidence for '{mission_title}' could not be prepared; leaving it for manual review: {e}")
            return undecided_verdict()

        for provider in self.providers:
            try:
                logger.info(f"--> Verifying '{mission_title}' with judge '{provider.name}'")
                raw_text = provider.judge(image_bytes, prompt)
                verdict = parse_verdict(raw_text)
            except Exception as e:
                logger.warning(f"Judge '{provider.name}' failed: {e}", exc_info=True)
                continue
            logger.info(
                f"Judge '{provider.name}' decided '{mission_title}': "
                f"valid={verdict.is_valid} confidence={verdict.confidence}"
            )
            return verdict.model_copy(update={"judged_by": provider.name})

        logger.error(f"All judges failed for '{mission_title}' ({', '.join(self.provider_names) or 'none configured'})")
        return undecided_verdict()
