"""
Caption and hashtag suggestions from an external multimodal API.

The engine hands over a rendered image as a JPEG data URL; this client
posts it to the Messages API and parses the JSON suggestion object out of
the reply.  The API key is read from the environment, optionally loaded from
a ``.env`` file via python-dotenv.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from dotenv import load_dotenv

from . import config
from .utils.image_operations import parse_data_url

logger = logging.getLogger(__name__)

PROMPT = """Analyze this photo and return ONLY a valid JSON object with this exact structure:
{
  "caption": "2-3 sentence engaging Instagram caption, conversational tone, ends with a question or call-to-action",
  "hashtags": ["array", "of", "28", "relevant", "hashtags", "no", "hash", "symbol", "mix", "of", "popular", "niche", "and", "trending"],
  "modelTemplate": "Model: @{model_handle}",
  "photographerTemplate": "Photo: @{photographer_handle}",
  "placeTemplate": "{City}, {Country}"
}
Return only the JSON object, no markdown, no code fences, no explanation."""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class CaptionError(RuntimeError):
    """Raised when suggestions cannot be produced; the message is user-facing."""


@dataclass(frozen=True)
class CaptionSuggestions:
    """Structured suggestion returned by the caption service."""

    caption: str
    hashtags: List[str] = field(default_factory=list)
    model_template: str = ""
    photographer_template: str = ""
    place_template: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptionSuggestions":
        caption = data.get("caption")
        if not isinstance(caption, str) or not caption.strip():
            raise CaptionError("AI returned an unexpected format. Please try again.")
        hashtags = data.get("hashtags") or []
        if not isinstance(hashtags, list):
            raise CaptionError("AI returned an unexpected format. Please try again.")
        return cls(
            caption=caption.strip(),
            hashtags=[str(tag).lstrip("#") for tag in hashtags if str(tag).strip()],
            model_template=str(data.get("modelTemplate", "")),
            photographer_template=str(data.get("photographerTemplate", "")),
            place_template=str(data.get("placeTemplate", "")),
        )


def load_environment(env_path: Optional[Union[str, Path]] = None) -> bool:
    """Load ``.env`` into the process environment; returns whether a file was found."""
    loaded = load_dotenv(dotenv_path=env_path, override=False)
    if loaded:
        logger.info("Loaded environment configuration from %s", env_path or ".env")
    return loaded


def parse_suggestions(text: str) -> CaptionSuggestions:
    """Extract the JSON suggestion object from reply ``text``.

    The object is located even when the model wraps it in prose or fences.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise CaptionError("AI returned an unexpected format. Please try again.")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise CaptionError("AI returned an unexpected format. Please try again.") from exc
    if not isinstance(data, dict):
        raise CaptionError("AI returned an unexpected format. Please try again.")
    return CaptionSuggestions.from_dict(data)


class CaptionClient:
    """
    HTTP client for caption suggestions.

    Args:
        api_key: API credential. If not provided, read from the environment
            variable named by ``config.CAPTION_API_KEY_ENV``.
        session: Optional ``requests.Session`` (injected in tests).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = config.CAPTION_MODEL,
        url: str = config.CAPTION_API_URL,
        timeout: float = config.CAPTION_TIMEOUT_SECS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.environ.get(config.CAPTION_API_KEY_ENV, "")
        self.model = model
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        if not self.api_key:
            logger.warning("%s not set. Caption suggestions are disabled.", config.CAPTION_API_KEY_ENV)

    def is_available(self) -> bool:
        """Check if the client has a credential configured."""
        return bool(self.api_key)

    def _payload(self, media_type: str, encoded: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": config.CAPTION_MAX_TOKENS,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": media_type, "data": encoded},
                        },
                        {"type": "text", "text": PROMPT},
                    ],
                }
            ],
        }

    def suggest(self, image_data_url: str) -> CaptionSuggestions:
        """
        Request caption suggestions for a rendered image.

        Args:
            image_data_url: ``data:image/jpeg;base64,...`` URL of the render

        Returns:
            CaptionSuggestions parsed from the reply

        Raises:
            CaptionError: With a human-readable failure reason
        """
        if not self.is_available():
            raise CaptionError(
                f"{config.CAPTION_API_KEY_ENV} is not set. Create a .env file with "
                "your API key to enable AI suggestions."
            )
        try:
            media_type, _ = parse_data_url(image_data_url)
        except ValueError as exc:
            raise CaptionError("Invalid image data URL") from exc
        encoded = image_data_url.split(",", 1)[1]

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": config.CAPTION_API_VERSION,
            "content-type": "application/json",
        }
        logger.info("Requesting caption suggestions (model=%s)", self.model)
        try:
            response = self._session.post(
                self.url,
                headers=headers,
                json=self._payload(media_type, encoded),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            logger.error("Caption request rejected (%s): %s", status, e)
            raise CaptionError(f"Caption service returned HTTP {status}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Caption request failed: %s", e)
            raise CaptionError(f"Failed to reach caption service: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise CaptionError("Caption service returned invalid JSON") from e
        if not isinstance(body, dict):
            raise CaptionError("Caption service returned invalid JSON")

        blocks = body.get("content") or []
        text = ""
        if blocks and isinstance(blocks[0], dict) and blocks[0].get("type") == "text":
            text = str(blocks[0].get("text", "")).strip()
        return parse_suggestions(text)


__all__ = [
    "CaptionError",
    "CaptionSuggestions",
    "CaptionClient",
    "load_environment",
    "parse_suggestions",
]
