"""
Configuration management for GigSight
"""

import yaml
import os
import re
import copy
from pathlib import Path
from typing import Dict, Any, Optional, Union
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

def _expand_env_vars(obj: Union[Dict, Any]) -> Union[Dict, Any]:
    """
    Recursively expand environment variables in config values.
    Supports ${VAR_NAME} syntax.
    """
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        # Replace ${VAR_NAME} with environment variable values
        pattern = r'\$\{([^}]+)\}'
        def replace_var(match):
            var_name = match.group(1)
            return os.getenv(var_name, match.group(0))  # Return original if not found
        return re.sub(pattern, replace_var, obj)
    else:
        return obj

_UNRESOLVED = re.compile(r'^\$\{[^}]+\}$')

def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge override into a copy of base.

    Null values and placeholders whose environment variable is unset
    leave the base value in place.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None or (isinstance(value, str) and _UNRESOLVED.match(value)):
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Values present in the file override the defaults; anything the file
    leaves out keeps its default.

    Args:
        config_path: Path to config file. If None, uses default config.yaml

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}. Using defaults.")
        return get_default_config()

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        # Expand environment variables in config values
        config = _expand_env_vars(config)
        return _merge(get_default_config(), config)
    except Exception as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return get_default_config()

def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration values

    Returns:
        Default configuration dictionary
    """
    return {
        'database': {
            'url': 'sqlite:///gigsight.db',
            'echo': False,
            'pool_timeout': 30,
            'auto_init': True,
        },
        'storage': {
            'type': 'local',
            'base_path': 'media',
            'bucket': None,
            'region': 'us-east-1',
            'presigned_url_expiry': 900,  # 15 minutes
        },
        'vision_llm': {
            'enabled': True,
            'provider': 'gemini',
            'request_timeout': 60,
            'max_image_dimension': 1568,
            'max_batch_images': 5,
            'gemini': {
                'api_key': os.getenv('GEMINI_API_KEY'),
                'model': 'gemini-1.5-flash',
                'temperature': 0.2,
                'max_output_tokens': 1024,
            },
        },
        'ffmpeg': {
            'ffmpeg_path': 'ffmpeg',
            'ffprobe_path': 'ffprobe',
            'timeout': 60,
            'thumbnail_offset': 1.0,
            'max_frames': 5,
            'seconds_per_frame': 20,
            'default_duration': 60,
            'audio_sample_duration': 15,
            'audio_sample_rate': 44100,
        },
        'matching': {
            'auto_match_threshold': 0.80,
            'suggestion_threshold': 0.35,
            'gps_radius_km': 5.0,
            'min_date_buffer_days': 1.5,
            'search_window_days': 10,
            'gps_date_confidence': 0.95,
            'additive_cap': 0.94,
        },
        'analysis': {
            'max_media_bytes': 500 * 1024 * 1024,
            'stale_after_minutes': 30,
            'max_attempts': 2,
            'lock_ttl': 900,
        },
        'celery': {
            'broker_url': os.getenv('REDIS_URL', 'redis://localhost:6379/0'),
            'result_backend': os.getenv('REDIS_URL', 'redis://localhost:6379/0'),
            'soft_time_limit': 300,
            'time_limit': 360,
            'recovery_interval_minutes': 10,
        },
        'spotify': {
            'client_id': os.getenv('SPOTIFY_CLIENT_ID'),
            'client_secret': os.getenv('SPOTIFY_CLIENT_SECRET'),
            'timeout': 10,
        },
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'color': True,
        },
    }

def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation

    Args:
        config: Configuration dictionary
        key_path: Dot-separated key path (e.g., 'matching.gps_radius_km')
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
