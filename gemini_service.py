import logging
from typing import List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel

from exceptions import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


class GeminiVerdictSchema(BaseModel):
    isValid: bool
    confidence: float
    reasoning: str
    detectedElements: List[str]
    suggestions: Optional[List[str]] = None


class GeminiJudge:
    """
    Primary judge. Sends the evidence image and the verification prompt to
    Gemini in JSON response mode and returns the raw text for the
    orchestrator to parse.
    """
    name = "gemini"

    def __init__(self, api_key, model=DEFAULT_GEMINI_MODEL, timeout_seconds=15, client=None):
        if not api_key and client is None:
            raise ValueError("A Gemini API key is required")
        self.model = model
        # HttpOptions.timeout is in milliseconds and bounds every request made by this client.
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )

    def judge(self, image_bytes: bytes, prompt: str) -> str:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
                    prompt,
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=GeminiVerdictSchema,
                    temperature=0.1  # Low temperature for consistent verdicts
                ))
        except Exception as e:
            raise ProviderError(f"Gemini request failed: {e}") from e

        if not response.text:
            logger.error("Empty response from Gemini")
            raise ProviderError("Empty response from Gemini")

        logger.debug(f"Raw Gemini verdict: {response.text[:500]}")
        return response.text
