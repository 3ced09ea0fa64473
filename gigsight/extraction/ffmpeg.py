"""
Video frame, audio and metadata extraction through ffmpeg/ffprobe.

Raw video bytes are piped to the binary on stdin and the result is read
from stdout, so nothing touches the local disk. Every operation is
best-effort: a failed, timed-out or early-exiting subprocess yields no
result instead of an exception.
"""

import json
import logging
import math
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from ..utils.geo import parse_iso6709

logger = logging.getLogger(__name__)

# Container tags holding the capture time, most reliable first
CREATION_DATE_TAGS = (
    'com.apple.quicktime.creationdate',
    'creation_time',
    'date',
    'date-eng',
)

# Container tags holding an ISO 6709 location
LOCATION_TAGS = (
    'com.apple.quicktime.location.iso6709',
    'location',
    'location-eng',
)

_COMPACT_OFFSET = re.compile(r'([+-]\d{2})(\d{2})$')


@dataclass
class VideoMetadata:
    """Container-level metadata of a video."""
    duration: Optional[float] = None
    taken_at: Optional[datetime] = None  # naive UTC
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def frame_timestamps(duration: Optional[float], max_frames: int = 5,
                     seconds_per_frame: float = 20, default_duration: float = 60) -> List[float]:
    """
    Evenly spaced sample points across a clip.

    One frame per ``seconds_per_frame`` of footage, capped at
    ``max_frames``; the first and last instants are never sampled.
    """
    if not duration or duration <= 0:
        duration = default_duration

    frame_count = max(1, min(max_frames, math.ceil(duration / seconds_per_frame)))
    interval = duration / (frame_count + 1)
    return [interval * (i + 1) for i in range(frame_count)]


def parse_creation_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a container date tag into naive UTC. Returns None if unparseable."""
    if not value:
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _COMPACT_OFFSET.sub(r'\1:\2', text)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _tag_sources(probe: Dict[str, Any]) -> List[Dict[str, str]]:
    """Format tags first, then each stream's tags, with lowercased keys."""
    sources = []
    format_tags = (probe.get('format') or {}).get('tags') or {}
    sources.append({k.lower(): v for k, v in format_tags.items()})
    for stream in probe.get('streams') or []:
        stream_tags = stream.get('tags') or {}
        sources.append({k.lower(): v for k, v in stream_tags.items()})
    return sources


def parse_probe_output(probe: Dict[str, Any]) -> VideoMetadata:
    """
    Build VideoMetadata from ffprobe's ``-show_format -show_streams`` JSON.

    Capture time and location each come from the first tag in their
    fallback list that parses.
    """
    format_info = probe.get('format') or {}
    streams = probe.get('streams') or []
    video_stream = next((s for s in streams if s.get('codec_type') == 'video'), None)

    metadata = VideoMetadata()

    for source in (format_info, video_stream or {}):
        try:
            duration = float(source.get('duration'))
        except (TypeError, ValueError):
            continue
        if duration > 0:
            metadata.duration = duration
            break

    if video_stream:
        metadata.width = video_stream.get('width')
        metadata.height = video_stream.get('height')

    sources = _tag_sources(probe)

    for tag in CREATION_DATE_TAGS:
        taken_at = next(
            (parsed for parsed in (parse_creation_time(tags.get(tag)) for tags in sources) if parsed),
            None
        )
        if taken_at:
            metadata.taken_at = taken_at
            break

    for tag in LOCATION_TAGS:
        point = next(
            (p for p in (parse_iso6709(tags.get(tag)) for tags in sources) if p),
            None
        )
        if point:
            metadata.latitude = point.lat
            metadata.longitude = point.lng
            break

    return metadata


class FrameSampler:
    """Runs ffmpeg/ffprobe over in-memory video bytes."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize frame sampler

        Args:
            config: The ``ffmpeg`` configuration section
        """
        config = config or {}
        self.ffmpeg_path = config.get('ffmpeg_path', 'ffmpeg')
        self.ffprobe_path = config.get('ffprobe_path', 'ffprobe')
        self.timeout = config.get('timeout', 60)
        self.thumbnail_offset = config.get('thumbnail_offset', 1.0)
        self.max_frames = config.get('max_frames', 5)
        self.seconds_per_frame = config.get('seconds_per_frame', 20)
        self.default_duration = config.get('default_duration', 60)
        self.audio_sample_duration = config.get('audio_sample_duration', 15)
        self.audio_sample_rate = config.get('audio_sample_rate', 44100)

    def _run(self, cmd: List[str], data: bytes) -> Optional[bytes]:
        """
        Pipe data through a subprocess and return its stdout.

        ffmpeg often exits as soon as it has what it needs, closing stdin
        while input is still being written. That counts as a normal run.
        """
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except OSError as e:
            logger.warning(f"Could not start {cmd[0]}: {e}")
            return None

        try:
            stdout, stderr = process.communicate(input=data, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            logger.warning(f"{cmd[0]} timed out after {self.timeout}s")
            return None
        except (BrokenPipeError, ConnectionResetError):
            # Reader went away before all input was written
            stdout = process.stdout.read() if process.stdout else b''
            process.wait()
            stderr = b''

        if process.returncode != 0:
            message = stderr.decode('utf-8', errors='replace').strip().splitlines()
            logger.debug(f"{cmd[0]} exited with {process.returncode}: "
                         f"{message[-1] if message else 'no output'}")
            return None

        return stdout or None

    def extract_frame_at(self, data: bytes, seconds: float) -> Optional[bytes]:
        """
        Extract a single JPEG frame.

        Args:
            data: Raw video bytes
            seconds: Offset into the clip

        Returns:
            JPEG bytes or None
        """
        cmd = [
            self.ffmpeg_path,
            '-ss', f'{max(seconds, 0):.3f}',
            '-i', 'pipe:0',
            '-vframes', '1',
            '-f', 'image2',
            '-vcodec', 'mjpeg',
            '-q:v', '3',
            'pipe:1',
        ]
        return self._run(cmd, data)

    def generate_thumbnail(self, data: bytes) -> Optional[bytes]:
        """JPEG thumbnail taken just past the start, skipping black lead-in frames."""
        return self.extract_frame_at(data, self.thumbnail_offset)

    def extract_frames(self, data: bytes, duration: Optional[float] = None) -> List[bytes]:
        """
        Sample frames at even intervals across the clip.

        Args:
            data: Raw video bytes
            duration: Clip length in seconds, if known

        Returns:
            JPEG frames in clip order; frames that fail are left out
        """
        timestamps = frame_timestamps(
            duration, self.max_frames, self.seconds_per_frame, self.default_duration
        )

        frames = []
        for timestamp in timestamps:
            frame = self.extract_frame_at(data, timestamp)
            if frame:
                frames.append(frame)
            else:
                logger.debug(f"No frame at {timestamp:.1f}s")

        logger.info(f"Extracted {len(frames)}/{len(timestamps)} frames")
        return frames

    def extract_audio(self, data: bytes) -> Optional[bytes]:
        """
        Extract a short mono WAV clip for audio fingerprinting.

        Returns:
            WAV bytes or None
        """
        cmd = [
            self.ffmpeg_path,
            '-i', 'pipe:0',
            '-t', str(self.audio_sample_duration),
            '-ar', str(self.audio_sample_rate),
            '-ac', '1',
            '-f', 'wav',
            'pipe:1',
        ]
        return self._run(cmd, data)

    def extract_metadata(self, data: bytes) -> Optional[VideoMetadata]:
        """
        Probe container metadata (duration, capture time, location).

        Returns:
            VideoMetadata or None if the probe fails
        """
        cmd = [
            self.ffprobe_path,
            '-v', 'quiet',
            '-print_format', 'json',
            '-show_format',
            '-show_streams',
            '-i', 'pipe:0',
        ]
        output = self._run(cmd, data)
        if not output:
            return None

        try:
            probe = json.loads(output)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable ffprobe output: {e}")
            return None

        return parse_probe_output(probe)
