"""
Tests for ffmpeg/ffprobe based video extraction
"""

import json
import subprocess
from datetime import datetime
from unittest.mock import Mock, patch

import pytest

from gigsight.extraction import (
    FrameSampler, frame_timestamps, parse_probe_output, parse_creation_time
)


def probe(format_tags=None, stream_tags=None, duration='42.5', stream_duration=None):
    video_stream = {'codec_type': 'video', 'width': 1920, 'height': 1080,
                    'tags': stream_tags or {}}
    if stream_duration is not None:
        video_stream['duration'] = stream_duration
    format_info = {'tags': format_tags or {}}
    if duration is not None:
        format_info['duration'] = duration
    return {
        'format': format_info,
        'streams': [{'codec_type': 'audio', 'tags': {}}, video_stream],
    }


@pytest.fixture
def sampler():
    return FrameSampler({'timeout': 5})


@pytest.fixture
def popen():
    with patch('gigsight.extraction.ffmpeg.subprocess.Popen') as mock_popen:
        process = Mock()
        process.returncode = 0
        process.communicate.return_value = (b'\xff\xd8jpeg', b'')
        mock_popen.return_value = process
        yield mock_popen


class TestFrameTimestamps:
    """Test frame sampling positions"""

    def test_one_frame_per_twenty_seconds(self):
        assert frame_timestamps(60) == [15.0, 30.0, 45.0]

    def test_capped_at_max_frames(self):
        assert frame_timestamps(300) == [50.0, 100.0, 150.0, 200.0, 250.0]

    def test_short_clip_gets_one_middle_frame(self):
        assert frame_timestamps(5) == [2.5]

    @pytest.mark.parametrize("duration", [None, 0, -3])
    def test_unknown_duration_uses_default(self, duration):
        assert frame_timestamps(duration) == [15.0, 30.0, 45.0]

    def test_never_samples_endpoints(self):
        for duration in (1, 19, 61, 99.9, 3600):
            stamps = frame_timestamps(duration)
            assert all(0 < s < duration for s in stamps)
            assert stamps == sorted(stamps)


class TestCreationTime:
    """Test container date parsing"""

    def test_utc_z(self):
        assert parse_creation_time('2024-06-15T21:30:00.000000Z') == datetime(2024, 6, 15, 21, 30)

    def test_compact_offset(self):
        assert parse_creation_time('2024-06-15T17:30:00-0400') == datetime(2024, 6, 15, 21, 30)

    def test_colon_offset(self):
        assert parse_creation_time('2024-06-16T06:30:00+09:00') == datetime(2024, 6, 15, 21, 30)

    def test_naive_kept(self):
        assert parse_creation_time('2024-06-15 21:30:00') == datetime(2024, 6, 15, 21, 30)

    @pytest.mark.parametrize("value", [None, '', 'yesterday', '2024-13-45T00:00:00Z'])
    def test_unparseable(self, value):
        assert parse_creation_time(value) is None


class TestProbeParsing:
    """Test metadata extraction from ffprobe JSON"""

    def test_apple_tags_preferred(self):
        metadata = parse_probe_output(probe(format_tags={
            'creation_time': '2024-06-16T01:30:05.000000Z',
            'com.apple.quicktime.creationdate': '2024-06-15T21:30:00-0400',
            'com.apple.quicktime.location.ISO6709': '+40.7505-073.9934+010.000/',
            'location': '+10.0000+010.0000/',
        }))

        assert metadata.taken_at == datetime(2024, 6, 16, 1, 30)
        assert metadata.latitude == pytest.approx(40.7505)
        assert metadata.longitude == pytest.approx(-73.9934)
        assert metadata.duration == pytest.approx(42.5)
        assert (metadata.width, metadata.height) == (1920, 1080)

    def test_falls_back_to_stream_tags(self):
        metadata = parse_probe_output(probe(
            format_tags={'location': 'garbage'},
            stream_tags={'creation_time': '2024-06-15T21:30:00Z', 'location-eng': '+51.5560-000.2795/'},
        ))

        assert metadata.taken_at == datetime(2024, 6, 15, 21, 30)
        assert metadata.latitude == pytest.approx(51.556)
        assert metadata.longitude == pytest.approx(-0.2795)

    def test_unparseable_tag_falls_through(self):
        metadata = parse_probe_output(probe(format_tags={
            'com.apple.quicktime.creationdate': 'not a date',
            'date': '2024-06-15',
        }))

        assert metadata.taken_at == datetime(2024, 6, 15)

    def test_stream_duration_when_format_lacks_it(self):
        metadata = parse_probe_output(probe(duration='N/A', stream_duration='12.0'))
        assert metadata.duration == 12.0

    def test_empty_probe(self):
        metadata = parse_probe_output({})
        assert metadata.duration is None
        assert metadata.taken_at is None
        assert not metadata.has_location


class TestSubprocess:
    """Test the ffmpeg subprocess wrapper"""

    def test_success_returns_stdout(self, sampler, popen):
        assert sampler.extract_frame_at(b'video', 1.0) == b'\xff\xd8jpeg'

        cmd = popen.call_args[0][0]
        assert cmd[0] == 'ffmpeg'
        assert cmd[cmd.index('-ss') + 1] == '1.000'
        assert cmd[-1] == 'pipe:1'
        popen.return_value.communicate.assert_called_once_with(input=b'video', timeout=5)

    def test_nonzero_exit(self, sampler, popen):
        popen.return_value.returncode = 1
        popen.return_value.communicate.return_value = (b'', b'pipe:0: Invalid data found\n')

        assert sampler.extract_frame_at(b'video', 1.0) is None

    def test_timeout_kills_process(self, sampler, popen):
        process = popen.return_value
        process.communicate.side_effect = [subprocess.TimeoutExpired('ffmpeg', 5), (b'', b'')]

        assert sampler.generate_thumbnail(b'video') is None
        process.kill.assert_called_once()

    def test_missing_binary(self, sampler, popen):
        popen.side_effect = FileNotFoundError("ffmpeg")
        assert sampler.extract_audio(b'video') is None

    def test_early_exit_is_not_an_error(self, sampler, popen):
        process = popen.return_value
        process.communicate.side_effect = BrokenPipeError()
        process.stdout.read.return_value = b'\xff\xd8partial'

        assert sampler.extract_frame_at(b'video', 2) == b'\xff\xd8partial'
        process.wait.assert_called_once()

    def test_empty_output_is_none(self, sampler, popen):
        popen.return_value.communicate.return_value = (b'', b'')
        assert sampler.extract_frame_at(b'video', 1.0) is None

    def test_audio_command(self, sampler, popen):
        popen.return_value.communicate.return_value = (b'RIFFwav', b'')

        assert sampler.extract_audio(b'video') == b'RIFFwav'
        cmd = popen.call_args[0][0]
        assert cmd[cmd.index('-ac') + 1] == '1'
        assert cmd[cmd.index('-f') + 1] == 'wav'


class TestFrameSampler:
    """Test frame and metadata extraction built on the wrapper"""

    def test_extract_frames_skips_failures(self, sampler):
        with patch.object(sampler, 'extract_frame_at', side_effect=[b'one', None, b'three']) as extract:
            frames = sampler.extract_frames(b'video', 60)

        assert frames == [b'one', b'three']
        assert [c.args[1] for c in extract.call_args_list] == [15.0, 30.0, 45.0]

    def test_extract_metadata(self, sampler):
        output = json.dumps(probe(format_tags={'creation_time': '2024-06-15T21:30:00Z'})).encode()
        with patch.object(sampler, '_run', return_value=output) as run:
            metadata = sampler.extract_metadata(b'video')

        assert metadata.taken_at == datetime(2024, 6, 15, 21, 30)
        assert run.call_args[0][0][0] == 'ffprobe'

    def test_extract_metadata_failure(self, sampler):
        with patch.object(sampler, '_run', return_value=None):
            assert sampler.extract_metadata(b'video') is None

        with patch.object(sampler, '_run', return_value=b'not json'):
            assert sampler.extract_metadata(b'video') is None
