"""
Database models for GigSight.

Defines the SQLAlchemy ORM models for uploaded media, concerts and the
venues and artists attached to them.
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text,
    ForeignKey, Index, BigInteger, Enum, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class MediaType(enum.Enum):
    """Kind of uploaded media."""
    PHOTO = "photo"
    VIDEO = "video"


class AnalysisStatus(enum.Enum):
    """Analysis pipeline status of a media item."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Venue(Base):
    """Concert venue."""
    __tablename__ = 'venues'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    city = Column(String(255))
    country = Column(String(100))
    latitude = Column(Float)
    longitude = Column(Float)
    mbid = Column(String(36), unique=True)  # MusicBrainz id

    concerts = relationship("Concert", back_populates="venue")


class Artist(Base):
    """Performing artist or band."""
    __tablename__ = 'artists'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    mbid = Column(String(36), unique=True)
    spotify_id = Column(String(64))

    concert_links = relationship("ConcertArtist", back_populates="artist")


class ConcertArtist(Base):
    """Association between concerts and artists with billing order."""
    __tablename__ = 'concert_artists'

    concert_id = Column(Integer, ForeignKey('concerts.id'), primary_key=True)
    artist_id = Column(Integer, ForeignKey('artists.id'), primary_key=True)
    is_headliner = Column(Boolean, default=False)
    position = Column(Integer, default=0)

    # Relationships
    concert = relationship("Concert", back_populates="artist_links")
    artist = relationship("Artist", back_populates="concert_links")


class Concert(Base):
    """A concert (or multi-day festival) a user attended."""
    __tablename__ = 'concerts'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    venue_id = Column(Integer, ForeignKey('venues.id'), nullable=True)

    # Dates are naive UTC
    concert_date = Column(DateTime, nullable=False)
    concert_end_date = Column(DateTime)  # Festivals / multi-day events

    tour_name = Column(String(255))
    notes = Column(Text)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    venue = relationship("Venue", back_populates="concerts")
    artist_links = relationship(
        "ConcertArtist", back_populates="concert",
        order_by="ConcertArtist.position", cascade="all, delete-orphan"
    )
    media = relationship("MediaItem", back_populates="concert")

    @property
    def artists(self):
        """Artists in billing order."""
        return [link.artist for link in self.artist_links]

    __table_args__ = (
        Index('idx_concert_user_date', 'user_id', 'concert_date'),
    )


class MediaItem(Base):
    """Uploaded photo or video and the state of its analysis."""
    __tablename__ = 'media'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    media_type = Column(Enum(MediaType), nullable=False)

    # Storage
    storage_path = Column(Text, nullable=False)
    original_filename = Column(String(255))
    thumbnail_path = Column(Text)
    file_size = Column(BigInteger)

    # Capture metadata (naive UTC)
    taken_at = Column(DateTime)
    location_lat = Column(Float)
    location_lng = Column(Float)
    duration = Column(Float)  # seconds, videos only

    # Analysis state machine
    analysis_status = Column(Enum(AnalysisStatus), default=AnalysisStatus.PENDING,
                             nullable=False, index=True)
    analysis_error = Column(String(255))
    analysis_started_at = Column(DateTime)
    analysis_completed_at = Column(DateTime)
    analysis_attempts = Column(Integer, default=0, nullable=False)
    ai_analysis = Column(JSONType)

    # Assignment
    concert_id = Column(Integer, ForeignKey('concerts.id'), nullable=True, index=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    concert = relationship("Concert", back_populates="media")

    __table_args__ = (
        Index('idx_media_status_started', 'analysis_status', 'analysis_started_at'),
    )

    def __repr__(self) -> str:
        return (f"<MediaItem id={self.id} type={self.media_type.value if self.media_type else None} "
                f"status={self.analysis_status.value if self.analysis_status else None}>")
