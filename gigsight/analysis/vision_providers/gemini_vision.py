"""
Google Gemini Vision provider for GigSight.

Implements concert identification using Google's Gemini models.
"""

import logging
from typing import Dict, List

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from PIL import Image

from ..vision_llm_analyzer import VisionLLMProvider, SYSTEM_PROMPT
from ...exceptions import (
    ConfigurationError, RateLimitedError, UpstreamTimeoutError,
    UpstreamUnavailableError
)

logger = logging.getLogger(__name__)


class GeminiVisionProvider(VisionLLMProvider):
    """Google Gemini Vision implementation."""

    def __init__(self, config: Dict):
        """
        Initialize Gemini Vision provider.

        Args:
            config: Provider-specific configuration
        """
        super().__init__(config)
        self.name = "gemini"

        # Configure API
        api_key = config.get('api_key')
        if not api_key:
            raise ConfigurationError("Gemini API key not provided")

        genai.configure(api_key=api_key)

        # Initialize model
        model_name = config.get('model', 'gemini-1.5-flash')
        self.model = genai.GenerativeModel(model_name, system_instruction=SYSTEM_PROMPT)

        # Safety settings
        self.safety_settings = self._configure_safety()

        self.generation_config = {
            'temperature': config.get('temperature', 0.2),
            'max_output_tokens': config.get('max_output_tokens', 1024),
            'response_mime_type': 'application/json',
        }

    def _configure_safety(self) -> List[Dict]:
        """Configure safety settings based on config."""
        safety_level = self.config.get('safety_settings', 'low')

        # Map safety levels
        level_map = {
            'low': 'BLOCK_ONLY_HIGH',
            'medium': 'BLOCK_MEDIUM_AND_ABOVE',
            'high': 'BLOCK_LOW_AND_ABOVE'
        }

        threshold = level_map.get(safety_level, 'BLOCK_ONLY_HIGH')

        return [
            {"category": category, "threshold": threshold}
            for category in (
                "HARM_CATEGORY_HARASSMENT",
                "HARM_CATEGORY_HATE_SPEECH",
                "HARM_CATEGORY_SEXUALLY_EXPLICIT",
                "HARM_CATEGORY_DANGEROUS_CONTENT",
            )
        ]

    def generate(self, images: List[Image.Image], prompt: str) -> str:
        """
        Analyze images using Gemini Vision.

        Raises:
            RateLimitedError: On quota exhaustion (429)
            UpstreamTimeoutError: When the request deadline passes
            UpstreamUnavailableError: On other server-side failures
        """
        try:
            response = self.model.generate_content(
                [prompt, *images],
                generation_config=self.generation_config,
                safety_settings=self.safety_settings,
                request_options={'timeout': self.request_timeout}
            )
        except google_exceptions.ResourceExhausted as e:
            raise RateLimitedError(f"Gemini rate limited: {e}") from e
        except google_exceptions.DeadlineExceeded as e:
            raise UpstreamTimeoutError(f"Gemini request timed out: {e}") from e
        except (google_exceptions.ServiceUnavailable,
                google_exceptions.InternalServerError) as e:
            raise UpstreamUnavailableError(f"Gemini unavailable: {e}") from e
        except (google_exceptions.Unauthenticated,
                google_exceptions.PermissionDenied) as e:
            raise ConfigurationError(f"Gemini rejected credentials: {e}") from e

        # Check for safety blocks
        if response.prompt_feedback and response.prompt_feedback.block_reason:
            logger.warning(f"Gemini blocked the request: {response.prompt_feedback}")
            return ''

        try:
            text = response.text
        except ValueError:
            # No usable candidate (e.g. stopped for safety)
            logger.warning("Gemini returned no text candidate")
            return ''

        if getattr(response, 'usage_metadata', None):
            logger.debug(f"Gemini usage: {response.usage_metadata.total_token_count} tokens")

        return text
