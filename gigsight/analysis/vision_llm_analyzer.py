"""
Vision LLM analyzer for GigSight.

Sends concert photos or sampled video frames, together with whatever
capture metadata is known, to a vision-capable LLM and decodes its
answer into a VisualAnalysisResult. Unusable answers decode to the empty
result; transport and service failures propagate to the caller.
"""

import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Any
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests
from PIL import Image
from pydantic import ValidationError

from .models import VisualAnalysisResult
from ..exceptions import ConfigurationError, UnsupportedMediaError

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert concert identification AI. Your job is to analyze concert photos and video frames and identify key details.

You will receive:
1. The image(s) to analyze
2. Capture metadata (date taken, GPS coordinates if available)
3. Any additional context

Use ALL available information to make your identification:

VISUAL ANALYSIS:
- Stage design, lighting rigs, LED screens
- Artist appearance, clothing, instruments
- Venue architecture (indoor/outdoor, arena/club/stadium)
- Merch, banners, tour branding visible
- Crowd size to estimate venue capacity

METADATA CORRELATION:
- If you know the date, cross-reference with known tour dates
- GPS coordinates can identify the venue
- Date + venue + visual clues = high confidence identification

TOUR IDENTIFICATION:
- Artists often have distinct stage designs per tour
- LED screen content, stage shape, lighting colors are tour-specific
- If you identify the artist and have a date, you can often determine the tour

Return your analysis as a single JSON object:
{
  "artist": {
    "name": "Artist/band name or null",
    "confidence": 0.0-1.0,
    "clues": ["List of visual/contextual clues used"]
  },
  "venue": {
    "name": "Venue name or null",
    "city": "City or null",
    "type": "arena|stadium|club|theater|festival|outdoor|unknown",
    "confidence": 0.0-1.0,
    "clues": ["List of clues"]
  },
  "tour": {
    "name": "Tour name or null",
    "confidence": 0.0-1.0,
    "clues": ["List of clues"]
  },
  "estimatedDate": "YYYY-MM-DD or null if no metadata and can't infer",
  "overallConfidence": 0.0-1.0,
  "reasoning": "Brief summary of your identification process"
}"""


@dataclass
class AnalysisContext:
    """Capture metadata passed to the model alongside the image"""
    taken_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    original_filename: Optional[str] = None


def build_context_message(context: Optional[AnalysisContext] = None, subject: str = 'photo') -> str:
    """
    Build the user instruction sent with the image(s).

    Args:
        context: Known capture metadata
        subject: 'photo' or 'video'

    Returns:
        Instruction text
    """
    message = f"Analyze this concert {subject}."
    if context is None:
        return message

    parts = []
    if context.taken_at:
        parts.append(f"{subject.capitalize()} taken: {context.taken_at:%Y-%m-%d} "
                     f"at {context.taken_at:%H:%M} UTC")
    if context.latitude is not None and context.longitude is not None:
        parts.append(f"GPS coordinates: {context.latitude}, {context.longitude}")
    if context.original_filename:
        parts.append(f"Original filename: {context.original_filename}")

    if parts:
        message += ("\n\nCapture metadata:\n" + "\n".join(parts) +
                    "\n\nUse this metadata to help identify the tour and venue.")
    return message


def extract_json_object(text: str) -> Optional[str]:
    """
    Find the first balanced JSON object in free text.

    Braces inside string literals are ignored, so prose or markdown
    fences around the object do not confuse the scan.
    """
    if not text:
        return None

    start = text.find('{')
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == '{':
                depth += 1
            elif ch == '}':
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from here; try the next opening brace
        start = text.find('{', start + 1)
    return None


def parse_analysis(text: Optional[str]) -> VisualAnalysisResult:
    """
    Decode model output into a VisualAnalysisResult.

    Never raises: anything that is not a JSON object matching the schema
    yields the empty zero-confidence result.
    """
    raw = extract_json_object(text or '')
    if raw is None:
        logger.warning("No JSON object found in vision response")
        return VisualAnalysisResult.empty("Failed to analyze media: no JSON in response")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse vision response JSON: {e}")
        return VisualAnalysisResult.empty("Failed to analyze media: malformed JSON")

    if not isinstance(data, dict):
        return VisualAnalysisResult.empty("Failed to analyze media: unexpected response shape")

    try:
        return VisualAnalysisResult.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Vision response did not match schema: {e.error_count()} errors")
        return VisualAnalysisResult.empty("Failed to analyze media: unexpected response shape")


def combine_analyses(results: List[VisualAnalysisResult], reasoning: Optional[str] = None) -> VisualAnalysisResult:
    """
    Per-field best-of consensus across several analyses.

    Artist, venue and tour each come from whichever analysis was most
    confident about that field; the first estimated date wins and the
    overall confidence is the maximum seen.
    """
    if not results:
        return VisualAnalysisResult.empty("No frames could be analyzed")
    if len(results) == 1:
        return results[0]

    best_artist = max(results, key=lambda r: r.artist.confidence).artist
    best_venue = max(results, key=lambda r: r.venue.confidence).venue
    best_tour = max(results, key=lambda r: r.tour.confidence).tour

    return VisualAnalysisResult(
        artist=best_artist,
        venue=best_venue,
        tour=best_tour,
        estimated_date=next((r.estimated_date for r in results if r.estimated_date), None),
        overall_confidence=max(r.overall_confidence for r in results),
        reasoning=reasoning or f"Combined {len(results)} analyses",
    )


class VisionLLMProvider:
    """Abstract base class for vision-capable LLM providers."""

    def __init__(self, config: Dict):
        """Initialize the provider with configuration."""
        self.config = config
        self.name = "base"
        self.request_timeout = config.get('request_timeout', 60)

    def generate(self, images: List[Image.Image], prompt: str) -> str:
        """
        Ask the model about one or more images.

        Args:
            images: Prepared RGB images
            prompt: Instruction text

        Returns:
            Raw response text
        """
        raise NotImplementedError("Subclasses must implement generate")


class VisionAnalyzer:
    """
    Identifies artist, venue and tour in concert media.
    """

    def __init__(self, config: Dict, provider: Optional[VisionLLMProvider] = None):
        """
        Initialize the analyzer.

        Args:
            config: Full GigSight configuration
            provider: Pre-built provider; created from config on first use otherwise
        """
        self.vision_config = config.get('vision_llm', {})
        self.enabled = self.vision_config.get('enabled', True)
        self.request_timeout = self.vision_config.get('request_timeout', 60)
        self.max_image_dimension = self.vision_config.get('max_image_dimension', 1568)
        self.max_batch_images = self.vision_config.get('max_batch_images', 5)
        self._provider = provider

    @property
    def provider(self) -> VisionLLMProvider:
        if self._provider is None:
            self._provider = self._init_provider()
        return self._provider

    def _init_provider(self) -> VisionLLMProvider:
        """Initialize the configured vision LLM provider."""
        if not self.enabled:
            raise ConfigurationError("Vision analysis is disabled")

        provider_name = self.vision_config.get('provider', 'gemini')

        # Import providers lazily so their clients are only built when used
        if provider_name == 'gemini':
            from .vision_providers.gemini_vision import GeminiVisionProvider
            provider_config = dict(self.vision_config.get('gemini', {}))
            provider_config.setdefault('request_timeout', self.request_timeout)
            return GeminiVisionProvider(provider_config)
        raise ConfigurationError(f"Unknown vision provider: {provider_name}")

    def prepare_image(self, data: bytes) -> Image.Image:
        """
        Decode image bytes into an RGB image no larger than the model accepts.

        Raises:
            UnsupportedMediaError: If the bytes are not a readable image
        """
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (OSError, Image.DecompressionBombError) as e:
            raise UnsupportedMediaError(f"Unreadable image: {e}") from e

        # Flatten transparency onto white
        if img.mode in ('RGBA', 'LA', 'P'):
            img = img.convert('RGBA')
            background = Image.new('RGB', img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[3])
            img = background
        elif img.mode != 'RGB':
            img = img.convert('RGB')

        if max(img.size) > self.max_image_dimension:
            img.thumbnail((self.max_image_dimension, self.max_image_dimension),
                          Image.Resampling.LANCZOS)
        return img

    def fetch_image(self, image_url: str) -> bytes:
        """Download image bytes from a (presigned) URL."""
        parsed = urlparse(image_url)
        if parsed.scheme == 'file':
            with open(url2pathname(parsed.path), 'rb') as f:
                return f.read()

        response = requests.get(image_url, timeout=self.request_timeout)
        response.raise_for_status()
        return response.content

    def _analyze(self, images: List[bytes], context: Optional[AnalysisContext],
                 subject: str) -> VisualAnalysisResult:
        prepared = [self.prepare_image(data) for data in images]
        prompt = build_context_message(context, subject)
        text = self.provider.generate(prepared, prompt)
        result = parse_analysis(text)

        logger.info(f"Vision analysis: artist={result.artist.name!r} venue={result.venue.name!r} "
                    f"confidence={result.overall_confidence:.2f}")
        return result

    def analyze_image(self, data: bytes, context: Optional[AnalysisContext] = None) -> VisualAnalysisResult:
        """Analyze a single photo given its bytes."""
        return self._analyze([data], context, 'photo')

    def analyze_photo(self, image_url: str, context: Optional[AnalysisContext] = None) -> VisualAnalysisResult:
        """
        Analyze a single photo by URL.

        Args:
            image_url: Presigned download URL
            context: Known capture metadata

        Returns:
            VisualAnalysisResult (empty if the model's answer was unusable)
        """
        return self.analyze_image(self.fetch_image(image_url), context)

    def analyze_frames(self, frames: List[bytes], context: Optional[AnalysisContext] = None) -> VisualAnalysisResult:
        """
        Analyze sampled video frames and combine them.

        Each frame is analyzed on its own; frames whose analysis fails are
        skipped. If every frame fails, the last error is raised.
        """
        frames = [f for f in frames if f][:self.max_batch_images]
        if not frames:
            raise UnsupportedMediaError("No video frames to analyze")

        results = []
        last_error: Optional[Exception] = None
        for index, frame in enumerate(frames):
            try:
                results.append(self._analyze([frame], context, 'video'))
            except Exception as e:
                logger.warning(f"Frame {index} analysis failed: {e}")
                last_error = e

        if not results:
            raise last_error

        return combine_analyses(results, f"Analyzed {len(results)} video frames")
