"""
Visual identification of artist, venue and tour in concert media.
"""

from .models import (
    VisualAnalysisResult, ArtistAnalysis, VenueAnalysis, TourAnalysis, VenueType
)
from .vision_llm_analyzer import (
    VisionAnalyzer, VisionLLMProvider, AnalysisContext, build_context_message,
    extract_json_object, parse_analysis, combine_analyses, SYSTEM_PROMPT
)

__all__ = [
    'VisualAnalysisResult',
    'ArtistAnalysis',
    'VenueAnalysis',
    'TourAnalysis',
    'VenueType',
    'VisionAnalyzer',
    'VisionLLMProvider',
    'AnalysisContext',
    'build_context_message',
    'extract_json_object',
    'parse_analysis',
    'combine_analyses',
    'SYSTEM_PROMPT',
]
