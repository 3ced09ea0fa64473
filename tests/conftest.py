"""
Shared fixtures for GigSight tests
"""

import io
from datetime import datetime

import pytest
from PIL import Image

from gigsight.config import get_default_config
from gigsight.db import (
    configure_database, drop_database, MediaOperations, ConcertOperations, MediaType
)
from gigsight.storage import LocalStorage


@pytest.fixture
def config(tmp_path):
    """Default configuration pointed at an in-memory database and a temp media dir"""
    config = get_default_config()
    config['database'] = {'url': 'sqlite://', 'echo': False, 'auto_init': True}
    config['storage'] = {'type': 'local', 'base_path': str(tmp_path / 'media')}
    config['vision_llm']['gemini']['api_key'] = None
    return config


@pytest.fixture
def db(config):
    """Fresh in-memory database with the schema created"""
    configure_database(config)
    yield
    drop_database()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / 'media'))


@pytest.fixture
def sample_jpeg():
    """Small JPEG image bytes"""
    img = Image.new('RGB', (64, 48), color='red')
    buffer = io.BytesIO()
    img.save(buffer, 'JPEG')
    return buffer.getvalue()


@pytest.fixture
def make_concert(db):
    """Factory for concerts owned by 'user-1' unless told otherwise"""
    def _make(concert_date=datetime(2024, 6, 15), concert_end_date=None,
              venue=None, artists=(), user_id='user-1'):
        return ConcertOperations.create_concert(
            user_id=user_id,
            concert_date=concert_date,
            concert_end_date=concert_end_date,
            venue=venue,
            artists=artists,
        )
    return _make


@pytest.fixture
def make_media(db):
    """Factory for pending media items owned by 'user-1' unless told otherwise"""
    def _make(media_type=MediaType.PHOTO, storage_path='user-1/photo.jpg',
              user_id='user-1', **fields):
        return MediaOperations.create_media(
            user_id=user_id,
            media_type=media_type,
            storage_path=storage_path,
            **fields
        )
    return _make


MSG_VENUE = {
    'name': 'Madison Square Garden',
    'city': 'New York',
    'latitude': 40.7505,
    'longitude': -73.9934,
}


@pytest.fixture
def msg_venue():
    return dict(MSG_VENUE)
