"""
Artist lookup CLI commands for GigSight
"""

import click

from ..enrichment.spotify import SpotifyClient
from ..exceptions import GigSightError


@click.group()
def artist():
    """Artist metadata commands"""
    pass


@artist.command()
@click.argument('name')
@click.option('--limit', '-l', default=5, help='Maximum number of results')
@click.pass_context
def search(ctx, name: str, limit: int):
    """Search Spotify for an artist"""
    client = SpotifyClient(ctx.obj['config'].get('spotify', {}))
    try:
        artists = client.search_artist(name, limit=limit)
    except GigSightError as e:
        raise click.ClickException(str(e))

    if not artists:
        click.echo("No artists found")
        return

    for found in artists:
        genres = ', '.join(found.genres[:3]) or '-'
        click.echo(f"{found.name}  [{found.id}]  popularity={found.popularity}  genres: {genres}")
