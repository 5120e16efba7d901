import base64
import logging

import requests

from exceptions import ProviderError

logger = logging.getLogger(__name__)

CLAUDE_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"


class ClaudeJudge:
    """Secondary judge, called through the Anthropic Messages API."""
    name = "claude"

    def __init__(self, api_key, model=DEFAULT_CLAUDE_MODEL, timeout_seconds=15, max_tokens=1000, session=None):
        if not api_key:
            raise ValueError("A Claude API key is required")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    def _payload(self, image_bytes, prompt):
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/jpeg",
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            },
                        },
                    ],
                }
            ],
        }

    def judge(self, image_bytes: bytes, prompt: str) -> str:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        try:
            response = self.session.post(
                CLAUDE_API_URL,
                json=self._payload(image_bytes, prompt),
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise ProviderError(f"Claude request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Claude returned a non-JSON body: {e}") from e

        text_blocks = [block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"]
        if not text_blocks:
            logger.error("No content returned from Claude API")
            raise ProviderError("No content returned from Claude API")
        return "".join(text_blocks)
