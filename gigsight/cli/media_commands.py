"""
Media analysis CLI commands for GigSight

Provides command-line access to the analysis pipeline and concert matching.
"""

import click
import json
import logging
from datetime import datetime

from ..analysis.models import VisualAnalysisResult
from ..db.connection import configure_database, get_session_factory
from ..db.operations import MediaOperations
from ..exceptions import GigSightError, MediaNotFoundError
from ..matching.concert_matcher import ConcertMatcher, MatchSignals
from ..processing.media_analysis import MediaAnalysisService, build_status_payload

logger = logging.getLogger(__name__)


def _ensure_database(ctx) -> None:
    if get_session_factory() is None:
        configure_database(ctx.obj['config'])


def _load_media(media_id: int):
    try:
        return MediaOperations.get_media(media_id)
    except MediaNotFoundError as e:
        raise click.ClickException(str(e))


@click.group()
@click.pass_context
def media(ctx):
    """Media analysis commands"""
    _ensure_database(ctx)


@media.command()
@click.argument('media_id', type=int)
@click.option('--sync', is_flag=True, help='Run in this process instead of queueing a task')
@click.pass_context
def analyze(ctx, media_id: int, sync: bool):
    """Analyze a media item and match it to a concert"""
    if sync:
        service = MediaAnalysisService(ctx.obj['config'])
        try:
            status = service.run_analysis(media_id)
        except MediaNotFoundError as e:
            raise click.ClickException(str(e))

        media_item = MediaOperations.get_media(media_id)
        click.echo(f"Media {media_id}: {status.value}")
        if media_item.analysis_error:
            click.echo(f"  Error: {media_item.analysis_error}")
        if media_item.concert_id:
            click.echo(f"  Matched concert: {media_item.concert_id}")
        return

    # Imported here so that synchronous runs do not need a broker
    from ..api.tasks import request_analysis
    task_id = request_analysis(media_id)
    click.echo(f"Queued analysis of media {media_id} (task {task_id})")


@media.command()
@click.argument('media_id', type=int)
def status(media_id: int):
    """Show the analysis status of a media item"""
    media_item = _load_media(media_id)
    click.echo(json.dumps(build_status_payload(media_item), indent=2, default=str))


@media.command()
@click.argument('media_id', type=int)
@click.pass_context
def match(ctx, media_id: int):
    """Score concerts for a media item without changing anything"""
    media_item = _load_media(media_id)

    visual = None
    stored = media_item.ai_analysis or {}
    if stored and not stored.get('visualAnalysisFailed'):
        visual = VisualAnalysisResult.model_validate(stored)

    signals = MatchSignals(
        user_id=media_item.user_id,
        taken_at=media_item.taken_at,
        latitude=media_item.location_lat,
        longitude=media_item.location_lng,
        visual_analysis=visual,
    )
    result = ConcertMatcher(ctx.obj['config']).find_matches(signals)

    if not result.auto_matched and not result.suggestions:
        click.echo("No matching concerts")
        return

    click.echo(f"{'Concert':>8}  {'Confidence':>10}  Matched via")
    click.echo("-" * 40)
    if result.auto_matched:
        top = result.auto_matched
        click.echo(f"{top.concert_id:>8}  {top.confidence:>10.2f}  {top.matched_via}  (auto)")
    for suggestion in result.suggestions:
        click.echo(f"{suggestion.concert_id:>8}  {suggestion.confidence:>10.2f}  {suggestion.matched_via}")


@media.command()
@click.argument('media_id', type=int)
@click.argument('concert_id')
@click.option('--user', '-u', 'user_id', required=True, help='Owning user id')
def assign(media_id: int, concert_id: str, user_id: str):
    """Assign a media item to a concert (use 'none' to unassign)"""
    if concert_id.lower() == 'none':
        target = None
    elif concert_id.isdigit():
        target = int(concert_id)
    else:
        raise click.ClickException(f"Invalid concert id '{concert_id}' (expected a number or 'none')")

    try:
        MediaOperations.assign_concert(media_id, user_id, target)
    except MediaNotFoundError as e:
        raise click.ClickException(str(e))

    if target is None:
        click.echo(f"Media {media_id} unassigned")
    else:
        click.echo(f"Media {media_id} assigned to concert {target}")


@media.command()
@click.option('--dry-run', is_flag=True, help='List stale analyses without changing them')
@click.pass_context
def recover(ctx, dry_run: bool):
    """Requeue or fail analyses stuck in processing"""
    service = MediaAnalysisService(ctx.obj['config'])

    if dry_run:
        stale = MediaOperations.find_stale_processing(datetime.utcnow() - service.stale_after)
        for media_item in stale:
            click.echo(f"  {media_item.id}: started {media_item.analysis_started_at}, "
                       f"attempts {media_item.analysis_attempts}")
        click.echo(f"{len(stale)} stale analyses")
        return

    from ..api.tasks import request_analysis
    try:
        outcome = service.recover_stale(enqueue=request_analysis)
    except GigSightError as e:
        raise click.ClickException(str(e))

    click.echo(f"Requeued: {len(outcome['requeued'])}, failed: {len(outcome['failed'])}")
