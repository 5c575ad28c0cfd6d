"""
Session playlists.

A feed is materialized once per session as a JSON list of ids in the shared
cache, then served page by page. Any API instance can serve any page.
"""

import math
import uuid
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from pawreels.services.cache import SharedCache
from pawreels.services.errors import SessionExpiredError

SESSION_TTL_SECONDS = 60 * 60 * 2


@dataclass
class Pagination:
    current_page: int
    total_pages: int
    total_items: int
    session_id: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "total_items": self.total_items,
            "session_id": self.session_id,
        }


@dataclass
class Page:
    items: list[Any] = field(default_factory=list)
    pagination: Pagination = field(
        default_factory=lambda: Pagination(current_page=1, total_pages=0, total_items=0, session_id=None)
    )

    @classmethod
    def empty(cls) -> "Page":
        return cls()


class SessionPlaylistCache:
    """
    Usage:
        playlists = SessionPlaylistCache(cache)
        session_id = await playlists.create_session(feed.ids)
        page = await playlists.get_page(session_id, page=2, page_size=10)
    """

    def __init__(self, cache: SharedCache, ttl: int = SESSION_TTL_SECONDS):
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def cache_key(session_id: str) -> str:
        return f"session:{session_id}"

    async def create_session(self, ids: list[int]) -> str:
        session_id = uuid.uuid4().hex
        await self.cache.set_json(self.cache_key(session_id), list(ids), ttl=self.ttl)
        logger.debug(f"Created session {session_id} with {len(ids)} items")
        return session_id

    async def get_page(self, session_id: str, page: int, page_size: int) -> Page:
        """
        Slice one page out of a session playlist.

        Raises:
            ValueError: page or page_size below 1
            SessionExpiredError: Unknown or expired session
        """
        if page < 1 or page_size < 1:
            raise ValueError(f"page and page_size must be >= 1 (got {page}, {page_size})")

        ids = await self.cache.get_json(self.cache_key(session_id)) if session_id else None
        if not isinstance(ids, list):
            logger.info(f"Session {session_id} expired or unknown")
            raise SessionExpiredError(session_id)

        total_items = len(ids)
        start = (page - 1) * page_size
        return Page(
            items=ids[start : start + page_size],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total_items / page_size),
                total_items=total_items,
                session_id=session_id,
            ),
        )
