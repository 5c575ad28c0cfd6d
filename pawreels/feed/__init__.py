"""
Consumer-facing feed.

- FeedAssembler: three-tier (local / regional / nationwide) candidate list
- SessionPlaylistCache: materialized playlists paged out of the shared cache
- FeedService: session start, paging, seen marks and cached browse
"""

from pawreels.feed.assembler import FeedAssembler, TieredFeed
from pawreels.feed.playlist import Page, Pagination, SessionPlaylistCache
from pawreels.feed.service import FeedService

__all__ = [
    "FeedAssembler",
    "TieredFeed",
    "Page",
    "Pagination",
    "SessionPlaylistCache",
    "FeedService",
]
