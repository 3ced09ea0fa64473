"""
Tests for vision LLM analysis and response decoding
"""

import io
import json
from datetime import datetime
from unittest.mock import Mock, patch

import pytest
from PIL import Image

from gigsight.analysis import (
    VisionAnalyzer, VisionLLMProvider, AnalysisContext, VisualAnalysisResult, VenueType,
    build_context_message, extract_json_object, parse_analysis, combine_analyses
)
from gigsight.exceptions import ConfigurationError, UnsupportedMediaError, UpstreamTimeoutError


GOOD_RESPONSE = {
    'artist': {'name': 'Taylor Swift', 'confidence': 0.92, 'clues': ['Eras Tour LED screen']},
    'venue': {'name': 'Madison Square Garden', 'city': 'New York', 'type': 'arena',
              'confidence': 0.7, 'clues': ['Ceiling structure']},
    'tour': {'name': 'The Eras Tour', 'confidence': 0.85, 'clues': []},
    'estimatedDate': '2024-06-15',
    'overallConfidence': 0.88,
    'reasoning': 'Stage design and screen graphics',
}


class ScriptedProvider(VisionLLMProvider):
    """Provider returning (or raising) queued responses"""

    def __init__(self, responses):
        super().__init__({})
        self.name = 'scripted'
        self.responses = list(responses)
        self.calls = []

    def generate(self, images, prompt):
        self.calls.append((images, prompt))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def analyzer_factory(config):
    def _make(responses, **overrides):
        config['vision_llm'].update(overrides)
        return VisionAnalyzer(config, provider=ScriptedProvider(responses))
    return _make


class TestExtractJsonObject:
    """Test locating the JSON object in model output"""

    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_surrounded_by_prose_and_fences(self):
        text = 'Here you go:\n```json\n{"a": {"b": 2}}\n```\nHope that helps!'
        assert extract_json_object(text) == '{"a": {"b": 2}}'

    def test_braces_inside_strings_ignored(self):
        text = '{"reasoning": "saw a } and a { on the banner", "x": "\\"}"}'
        assert json.loads(extract_json_object(text))['x'] == '"}'

    def test_unbalanced_then_balanced(self):
        assert extract_json_object('{ broken { "ok": true }') == '{ "ok": true }'

    def test_no_object(self):
        assert extract_json_object('I cannot identify this concert.') is None
        assert extract_json_object('') is None


class TestParseAnalysis:
    """Test decoding model output into results"""

    def test_full_response(self):
        result = parse_analysis(json.dumps(GOOD_RESPONSE))

        assert result.artist.name == 'Taylor Swift'
        assert result.artist.clues == ['Eras Tour LED screen']
        assert result.venue.type == VenueType.ARENA
        assert result.tour.name == 'The Eras Tour'
        assert result.estimated_date == '2024-06-15'
        assert result.overall_confidence == pytest.approx(0.88)
        assert result.has_identification

    def test_camel_case_payload(self):
        payload = parse_analysis(json.dumps(GOOD_RESPONSE)).to_payload()
        assert payload['overallConfidence'] == pytest.approx(0.88)
        assert payload['estimatedDate'] == '2024-06-15'
        assert payload['venue']['type'] == 'arena'

    @pytest.mark.parametrize("text", [
        None,
        '',
        'No concert visible.',
        '{"artist": {"name": "x",}',
        '{not json at all}',
    ])
    def test_unusable_output_gives_empty_result(self, text):
        result = parse_analysis(text)

        assert result.overall_confidence == 0.0
        assert result.artist.name is None
        assert result.venue.name is None
        assert result.tour.name is None
        assert result.reasoning.startswith('Failed to analyze media')

    def test_values_are_sanitized(self):
        result = parse_analysis(json.dumps({
            'artist': {'name': 'null', 'confidence': 1.7},
            'venue': {'name': ' The Fillmore ', 'city': 'unknown', 'type': 'warehouse',
                      'confidence': -2},
            'tour': 'not an object',
            'overallConfidence': 'high',
            'reasoning': None,
        }))

        assert result.artist.name is None
        assert result.artist.confidence == 1.0
        assert result.venue.name == 'The Fillmore'
        assert result.venue.city is None
        assert result.venue.type == VenueType.UNKNOWN
        assert result.venue.confidence == 0.0
        assert result.tour.name is None
        assert result.overall_confidence == 0.0
        assert result.reasoning == ''

    def test_missing_fields_default(self):
        result = parse_analysis('{"reasoning": "nothing visible"}')
        assert not result.has_identification
        assert result.reasoning == 'nothing visible'


class TestCombineAnalyses:
    """Test best-of consensus across frames"""

    def test_best_field_wins_independently(self):
        first = VisualAnalysisResult.model_validate({
            'artist': {'name': 'Muse', 'confidence': 0.9},
            'venue': {'name': 'Wembley', 'confidence': 0.2},
            'overallConfidence': 0.6,
        })
        second = VisualAnalysisResult.model_validate({
            'artist': {'name': 'Coldplay', 'confidence': 0.4},
            'venue': {'name': 'Wembley Stadium', 'confidence': 0.8},
            'estimatedDate': '2024-07-01',
            'overallConfidence': 0.7,
        })

        combined = combine_analyses([first, second])

        assert combined.artist.name == 'Muse'
        assert combined.venue.name == 'Wembley Stadium'
        assert combined.estimated_date == '2024-07-01'
        assert combined.overall_confidence == pytest.approx(0.7)

    def test_single_and_empty(self):
        only = VisualAnalysisResult(reasoning='one')
        assert combine_analyses([only]) is only
        assert combine_analyses([]).overall_confidence == 0.0


class TestContextMessage:
    """Test the instruction sent with images"""

    def test_without_context(self):
        assert build_context_message() == "Analyze this concert photo."

    def test_full_context(self):
        context = AnalysisContext(taken_at=datetime(2024, 6, 15, 21, 5),
                                  latitude=40.7505, longitude=-73.9934,
                                  original_filename='IMG_0042.HEIC')

        message = build_context_message(context)

        assert "Photo taken: 2024-06-15 at 21:05 UTC" in message
        assert "GPS coordinates: 40.7505, -73.9934" in message
        assert "Original filename: IMG_0042.HEIC" in message

    def test_video_subject(self):
        context = AnalysisContext(taken_at=datetime(2024, 6, 15, 21, 5))
        message = build_context_message(context, 'video')
        assert message.startswith("Analyze this concert video.")
        assert "Video taken: 2024-06-15" in message

    def test_zero_coordinates_included(self):
        message = build_context_message(AnalysisContext(latitude=0.0, longitude=0.0))
        assert "GPS coordinates: 0.0, 0.0" in message


class TestVisionAnalyzer:
    """Test the analyzer against a scripted provider"""

    def test_analyze_image(self, analyzer_factory, sample_jpeg):
        analyzer = analyzer_factory([json.dumps(GOOD_RESPONSE)])

        result = analyzer.analyze_image(sample_jpeg, AnalysisContext(taken_at=datetime(2024, 6, 15)))

        assert result.artist.name == 'Taylor Swift'
        images, prompt = analyzer.provider.calls[0]
        assert len(images) == 1
        assert images[0].mode == 'RGB'
        assert "Photo taken: 2024-06-15" in prompt

    def test_analyze_photo_from_file_url(self, analyzer_factory, sample_jpeg, tmp_path):
        path = tmp_path / 'photo.jpg'
        path.write_bytes(sample_jpeg)
        analyzer = analyzer_factory([json.dumps(GOOD_RESPONSE)])

        result = analyzer.analyze_photo(path.as_uri())

        assert result.tour.name == 'The Eras Tour'

    def test_analyze_photo_over_http(self, analyzer_factory, sample_jpeg):
        analyzer = analyzer_factory([json.dumps(GOOD_RESPONSE)])
        response = Mock(content=sample_jpeg)

        with patch('gigsight.analysis.vision_llm_analyzer.requests.get', return_value=response) as get:
            analyzer.analyze_photo('https://bucket.example.com/photo.jpg?sig=abc')

        get.assert_called_once_with('https://bucket.example.com/photo.jpg?sig=abc', timeout=60)
        response.raise_for_status.assert_called_once()

    def test_provider_errors_propagate(self, analyzer_factory, sample_jpeg):
        analyzer = analyzer_factory([UpstreamTimeoutError("deadline exceeded")])

        with pytest.raises(UpstreamTimeoutError):
            analyzer.analyze_image(sample_jpeg)

    def test_unreadable_image(self, analyzer_factory):
        analyzer = analyzer_factory([])

        with pytest.raises(UnsupportedMediaError):
            analyzer.analyze_image(b'definitely not an image')

    def test_prepare_image_downscales(self, analyzer_factory):
        analyzer = analyzer_factory([], max_image_dimension=100)
        img = Image.new('RGBA', (400, 200), (0, 0, 255, 128))
        buffer = io.BytesIO()
        img.save(buffer, 'PNG')

        prepared = analyzer.prepare_image(buffer.getvalue())

        assert prepared.mode == 'RGB'
        assert max(prepared.size) == 100
        assert prepared.size == (100, 50)

    def test_frames_skip_failures(self, analyzer_factory, sample_jpeg):
        second = dict(GOOD_RESPONSE, artist={'name': 'Taylor Swift', 'confidence': 0.99})
        analyzer = analyzer_factory([
            UpstreamTimeoutError("slow"),
            json.dumps(GOOD_RESPONSE),
            json.dumps(second),
        ])

        result = analyzer.analyze_frames([sample_jpeg] * 3)

        assert result.artist.confidence == pytest.approx(0.99)
        assert result.reasoning == "Analyzed 2 video frames"
        assert "Analyze this concert video." in analyzer.provider.calls[0][1]

    def test_frames_all_fail_raises_last_error(self, analyzer_factory, sample_jpeg):
        analyzer = analyzer_factory([ValueError("first"), UpstreamTimeoutError("last")])

        with pytest.raises(UpstreamTimeoutError, match="last"):
            analyzer.analyze_frames([sample_jpeg, sample_jpeg])

    def test_frames_limited_to_batch_size(self, analyzer_factory, sample_jpeg):
        analyzer = analyzer_factory([json.dumps(GOOD_RESPONSE)] * 2, max_batch_images=2)

        analyzer.analyze_frames([sample_jpeg] * 5)

        assert len(analyzer.provider.calls) == 2

    def test_no_frames(self, analyzer_factory):
        with pytest.raises(UnsupportedMediaError):
            analyzer_factory([]).analyze_frames([b'', None])


class TestProviderSelection:
    """Test lazy provider construction"""

    def test_disabled(self, config):
        config['vision_llm']['enabled'] = False
        with pytest.raises(ConfigurationError):
            VisionAnalyzer(config).provider

    def test_unknown_provider(self, config):
        config['vision_llm']['provider'] = 'mystery'
        with pytest.raises(ConfigurationError):
            VisionAnalyzer(config).provider

    def test_gemini_requires_api_key(self, config):
        config['vision_llm']['gemini']['api_key'] = None
        with pytest.raises(ConfigurationError):
            VisionAnalyzer(config).provider

    def test_construction_does_not_build_provider(self, config):
        config['vision_llm']['gemini']['api_key'] = None
        # No error until the provider is actually needed
        VisionAnalyzer(config)
