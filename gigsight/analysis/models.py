"""
Pydantic models for vision analysis results.

The vision model answers in free text that should contain one JSON
object. These models are the strict decode target: every field is
optional, confidences are clamped to [0, 1], and a failed decode maps to
a well-defined empty result.
"""

from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VenueType(str, Enum):
    """Kind of venue the model believes it sees"""
    ARENA = "arena"
    STADIUM = "stadium"
    CLUB = "club"
    THEATER = "theater"
    FESTIVAL = "festival"
    OUTDOOR = "outdoor"
    UNKNOWN = "unknown"


def _clamp_confidence(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


def _clean_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in ('null', 'none', 'unknown', 'n/a'):
        return None
    return value


class _IdentifiedField(BaseModel):
    model_config = ConfigDict(extra='ignore')

    name: Optional[str] = None
    confidence: float = 0.0
    clues: List[str] = Field(default_factory=list)

    @field_validator('name', mode='before')
    @classmethod
    def clean_name(cls, v):
        return _clean_name(v)

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v):
        return _clamp_confidence(v)

    @field_validator('clues', mode='before')
    @classmethod
    def coerce_clues(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]


class ArtistAnalysis(_IdentifiedField):
    """Detected performer"""
    pass


class TourAnalysis(_IdentifiedField):
    """Detected tour"""
    pass


class VenueAnalysis(_IdentifiedField):
    """Detected venue"""
    city: Optional[str] = None
    type: VenueType = VenueType.UNKNOWN

    @field_validator('city', mode='before')
    @classmethod
    def clean_city(cls, v):
        return _clean_name(v)

    @field_validator('type', mode='before')
    @classmethod
    def coerce_type(cls, v):
        try:
            return VenueType(str(v).strip().lower())
        except ValueError:
            return VenueType.UNKNOWN


class VisualAnalysisResult(BaseModel):
    """Structured answer from the vision model"""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    artist: ArtistAnalysis = Field(default_factory=ArtistAnalysis)
    venue: VenueAnalysis = Field(default_factory=VenueAnalysis)
    tour: TourAnalysis = Field(default_factory=TourAnalysis)
    estimated_date: Optional[str] = Field(default=None, alias='estimatedDate')
    overall_confidence: float = Field(default=0.0, alias='overallConfidence')
    reasoning: str = ''

    @field_validator('artist', 'venue', 'tour', mode='before')
    @classmethod
    def default_missing_section(cls, v):
        return v if isinstance(v, (dict, BaseModel)) else {}

    @field_validator('estimated_date', mode='before')
    @classmethod
    def clean_date(cls, v):
        return _clean_name(v)

    @field_validator('overall_confidence', mode='before')
    @classmethod
    def clamp_overall(cls, v):
        return _clamp_confidence(v)

    @field_validator('reasoning', mode='before')
    @classmethod
    def coerce_reasoning(cls, v):
        return '' if v is None else str(v)

    @classmethod
    def empty(cls, reasoning: str = 'Failed to analyze media') -> 'VisualAnalysisResult':
        """Zero-confidence result with every identification absent"""
        return cls(reasoning=reasoning)

    @property
    def has_identification(self) -> bool:
        return any((self.artist.name, self.venue.name, self.tour.name))

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase keys clients expect"""
        return self.model_dump(mode='json', by_alias=True)
