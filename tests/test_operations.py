"""
Tests for database operations
"""

from datetime import datetime

import pytest

from gigsight.db import MediaOperations, ConcertOperations, MediaType, AnalysisStatus
from gigsight.exceptions import MediaNotFoundError, InvalidStatusTransition


class TestStatusTransitions:
    """Test the analysis status state machine"""

    def test_new_media_is_pending(self, make_media):
        media = make_media()
        assert media.analysis_status == AnalysisStatus.PENDING
        assert media.analysis_attempts == 0

    def test_processing_then_completed(self, make_media):
        media = make_media()

        processing = MediaOperations.mark_processing(media.id)
        assert processing.analysis_status == AnalysisStatus.PROCESSING
        assert processing.analysis_started_at is not None
        assert processing.analysis_attempts == 1

        MediaOperations.mark_completed(media.id)
        stored = MediaOperations.get_media(media.id)
        assert stored.analysis_status == AnalysisStatus.COMPLETED
        assert stored.analysis_completed_at is not None

    def test_cannot_complete_without_processing(self, make_media):
        media = make_media()

        with pytest.raises(InvalidStatusTransition):
            MediaOperations.mark_completed(media.id)
        with pytest.raises(InvalidStatusTransition):
            MediaOperations.mark_failed(media.id, 'nope')

        assert MediaOperations.get_media(media.id).analysis_status == AnalysisStatus.PENDING

    def test_terminal_states_do_not_flip(self, make_media):
        media = make_media()
        MediaOperations.mark_processing(media.id)
        MediaOperations.mark_completed(media.id)

        with pytest.raises(InvalidStatusTransition):
            MediaOperations.mark_failed(media.id, 'late failure')

    def test_reanalysis_clears_error(self, make_media):
        media = make_media()
        MediaOperations.mark_processing(media.id)
        MediaOperations.mark_failed(media.id, 'Analysis timed out')

        restarted = MediaOperations.mark_processing(media.id)

        assert restarted.analysis_error is None
        assert restarted.analysis_completed_at is None
        assert restarted.analysis_attempts == 1

    def test_attempts_count_only_requeues_of_one_request(self, make_media):
        media = make_media()
        MediaOperations.mark_processing(media.id)
        MediaOperations.mark_completed(media.id)
        MediaOperations.mark_processing(media.id)
        MediaOperations.mark_completed(media.id)

        # User asks again, worker crashes, recovery picks it up
        MediaOperations.mark_processing(media.id)
        assert MediaOperations.get_media(media.id).analysis_attempts == 1

        resumed = MediaOperations.mark_processing(media.id)
        assert resumed.analysis_attempts == 2

    def test_error_message_truncated(self, make_media):
        media = make_media()
        MediaOperations.mark_processing(media.id)
        MediaOperations.mark_failed(media.id, 'x' * 400)

        assert len(MediaOperations.get_media(media.id).analysis_error) == 255

    def test_unknown_media(self, db):
        with pytest.raises(MediaNotFoundError):
            MediaOperations.mark_processing(12345)


class TestMetadataPersistence:
    """Test that extracted metadata never overwrites stored values"""

    def test_fills_empty_fields(self, make_media):
        media = make_media(media_type=MediaType.VIDEO, storage_path='user-1/clip.mp4')

        written = MediaOperations.save_extracted_metadata(
            media.id, taken_at=datetime(2024, 6, 15, 21, 30),
            latitude=40.75, longitude=-73.99, duration=12.5,
            thumbnail_path='user-1/clip_thumb.jpg'
        )

        assert set(written) == {'taken_at', 'location_lat', 'location_lng',
                                'duration', 'thumbnail_path'}
        stored = MediaOperations.get_media(media.id)
        assert stored.duration == 12.5
        assert stored.location_lng == -73.99

    def test_keeps_existing_values(self, make_media):
        media = make_media(taken_at=datetime(2024, 1, 1), location_lat=1.0, location_lng=2.0)

        written = MediaOperations.save_extracted_metadata(
            media.id, taken_at=datetime(2024, 6, 15), latitude=40.75, longitude=-73.99
        )

        assert written == {}
        stored = MediaOperations.get_media(media.id)
        assert stored.taken_at == datetime(2024, 1, 1)
        assert (stored.location_lat, stored.location_lng) == (1.0, 2.0)

    def test_half_coordinate_ignored(self, make_media):
        media = make_media()

        written = MediaOperations.save_extracted_metadata(media.id, latitude=40.75)

        assert written == {}


class TestConcertAssignment:
    """Test automatic and manual concert assignment"""

    def test_suggestions_then_manual_assignment(self, make_media, make_concert):
        concert = make_concert()
        media = make_media(ai_analysis={'overallConfidence': 0.4})

        MediaOperations.store_suggestions(media.id, [{'concertId': concert.id, 'confidence': 0.5}])
        assigned = MediaOperations.assign_concert(media.id, 'user-1', concert.id)

        assert assigned.concert_id == concert.id
        assert assigned.ai_analysis == {'overallConfidence': 0.4,
                                        'matchMetadata': {'matchedVia': 'manual'}}

    def test_unassign(self, make_media, make_concert):
        concert = make_concert()
        media = make_media()
        MediaOperations.apply_match(media.id, concert.id, {'matchedVia': 'gps+date', 'confidence': 0.95})

        unassigned = MediaOperations.assign_concert(media.id, 'user-1', None)

        assert unassigned.concert_id is None
        assert 'matchMetadata' not in unassigned.ai_analysis

    def test_cannot_assign_other_users_media_or_concert(self, make_media, make_concert):
        mine = make_concert()
        theirs = make_concert(user_id='user-2')
        media = make_media()

        with pytest.raises(MediaNotFoundError):
            MediaOperations.assign_concert(media.id, 'user-2', mine.id)
        with pytest.raises(MediaNotFoundError):
            MediaOperations.assign_concert(media.id, 'user-1', theirs.id)


class TestConcertQueries:
    """Test concert creation and window lookups"""

    def test_lineup_order_and_headliner(self, make_concert, msg_venue):
        concert = make_concert(venue=msg_venue, artists=['Headliner', 'Opener'])

        assert concert.venue.name == 'Madison Square Garden'
        assert [a.name for a in concert.artists] == ['Headliner', 'Opener']
        assert concert.artist_links[0].is_headliner
        assert not concert.artist_links[1].is_headliner

    def test_artists_reused_across_concerts(self, make_concert):
        first = make_concert(artists=['Phish'])
        second = make_concert(concert_date=datetime(2024, 6, 16), artists=['Phish'])

        assert first.artists[0].id == second.artists[0].id

    def test_window(self, make_concert):
        inside = make_concert(concert_date=datetime(2024, 6, 15))
        make_concert(concert_date=datetime(2024, 7, 30))
        festival = make_concert(concert_date=datetime(2024, 5, 28),
                                concert_end_date=datetime(2024, 6, 7))
        make_concert(concert_date=datetime(2024, 5, 1), concert_end_date=datetime(2024, 5, 3))
        make_concert(concert_date=datetime(2024, 6, 15), user_id='user-2')

        found = ConcertOperations.find_concerts_in_window(
            'user-1', datetime(2024, 6, 5), datetime(2024, 6, 25)
        )

        assert [c.id for c in found] == [festival.id, inside.id]
