#!/usr/bin/env python3
"""
GigSight Command Line Interface

Main CLI entry point for GigSight. Runs and inspects the media analysis
pipeline that matches concert photos and videos to a user's concerts.
"""

import click
import logging
from typing import Optional

from gigsight.config import load_config
from gigsight.utils.logging import setup_console_logging
from gigsight.db.connection import configure_database, init_database
from gigsight.cli.media_commands import media
from gigsight.cli.artist_commands import artist

logger = logging.getLogger(__name__)


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
@click.pass_context
def main(ctx, config: Optional[str] = None, verbose: bool = False, quiet: bool = False):
    """
    GigSight - Concert media identification

    Works out which concert an uploaded photo or video belongs to from its
    capture time, GPS position and what a vision model can see in it.
    """

    # Ensure context object exists
    if ctx.obj is None:
        ctx.obj = {}

    # Load configuration
    ctx.obj['config'] = load_config(config)

    # Configure logging level
    log_config = ctx.obj['config'].get('logging', {})
    level = log_config.get('level', 'INFO')
    if verbose:
        level = 'DEBUG'
    elif quiet:
        level = 'ERROR'
    setup_console_logging(level, color=log_config.get('color', True), fmt=log_config.get('format'))

    # Store CLI options in context
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@main.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the database schema"""
    db_config = dict(ctx.obj['config'].get('database', {}), auto_init=False)
    configure_database({**ctx.obj['config'], 'database': db_config})
    init_database()
    click.echo("Database schema initialized")


main.add_command(media)
main.add_command(artist)


if __name__ == '__main__':
    main()
