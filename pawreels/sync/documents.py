"""
Upstream listing documents.

Listings carry schema-uncontrolled nested documents (breeds, photos, videos,
contact). They stay open dictionaries; only the pieces the pipeline inspects
are normalized here: the video embed, the breed dedup key and the address.
"""

import re
from typing import Any, Iterable
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

_EMBED_SRC = re.compile(r"""src\s*=\s*(?:"([^"]+)"|'([^']+)')""", re.IGNORECASE)


class Listing(BaseModel):
    """One animal as returned by the listings API."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str = ""
    url: str = ""
    type: str = ""
    age: str = ""
    gender: str = ""
    size: str = ""
    status: str = ""
    breeds: dict[str, Any] = Field(default_factory=dict)
    colors: dict[str, Any] = Field(default_factory=dict)
    photos: list[Any] = Field(default_factory=list)
    videos: list[Any] = Field(default_factory=list)
    contact: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] | None = None
    environment: dict[str, Any] | None = None
    organization_id: str | None = None

    def address_city_state(self) -> tuple[str | None, str | None]:
        address = (self.contact or {}).get("address") or {}
        city = address.get("city") or None
        state = address.get("state") or None
        return city, state

    def to_fields(self, lat: float | None, lon: float | None) -> dict[str, Any]:
        """Column values for an animal row."""
        city, state = self.address_city_state()
        return {
            "id": self.id,
            "name": self.name or "",
            "url": self.url or "",
            "type": self.type or "",
            "age": self.age or "",
            "gender": self.gender or "",
            "size": self.size or "",
            "status": self.status or "",
            "breeds": self.breeds or {},
            "colors": self.colors or {},
            "photos": self.photos or [],
            "videos": self.videos or [],
            "contact": self.contact or {},
            "attributes": self.attributes,
            "environment": self.environment,
            "city": city,
            "state": state,
            "latitude": lat,
            "longitude": lon,
            "organization_id": self.organization_id,
        }


class OrganizationDoc(BaseModel):
    """Organization detail document."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    email: str | None = None
    phone: str | None = None
    address: dict[str, Any] | None = None
    url: str = ""

    def to_fields(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "url": self.url or "",
        }


def parse_listings(raw: Iterable[dict[str, Any]]) -> list[Listing]:
    """Parse raw listing dicts, skipping any without a usable id."""
    listings = []
    for item in raw:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        try:
            listings.append(Listing.model_validate(_nulls_to_defaults(item)))
        except ValueError:
            continue
    return listings


def _nulls_to_defaults(item: dict[str, Any]) -> dict[str, Any]:
    # upstream sends null for empty documents and strings
    return {key: value for key, value in item.items() if value is not None}


def extract_embed_src(embed: str | None) -> str | None:
    """First quoted src value of an HTML embed snippet."""
    if not embed or not isinstance(embed, str):
        return None
    match = _EMBED_SRC.search(embed)
    if not match:
        return None
    return (match.group(1) or match.group(2)).strip() or None


def extract_video_url(videos: list[Any] | None) -> str | None:
    """Video URL of the first video, if its embed carries one."""
    if not videos or not isinstance(videos, list):
        return None
    first = videos[0]
    if not isinstance(first, dict):
        return None
    return extract_embed_src(first.get("embed"))


def is_blocked_host(url: str, blocked_hosts: Iterable[str]) -> bool:
    parsed = urlparse(url if "//" in url else f"//{url}")
    host = (parsed.netloc or url).lower()
    return any(blocked and blocked.lower() in host for blocked in blocked_hosts)


def playable_video_url(videos: list[Any] | None, blocked_hosts: Iterable[str]) -> str | None:
    """Video URL when the first video is playable and not on a blocked host."""
    url = extract_video_url(videos)
    if url is None or is_blocked_host(url, blocked_hosts):
        return None
    return url


def is_video_eligible(listing: Listing, blocked_hosts: Iterable[str]) -> bool:
    return playable_video_url(listing.videos, blocked_hosts) is not None


def breed_key(breeds: Any) -> tuple[tuple[str, str], ...] | str:
    """
    Case-insensitive, order-independent breed composition.

    {"primary": "Lab", "secondary": "Mix"} and {"secondary": "mix", "primary": "lab"}
    produce the same key.
    """
    if not breeds:
        return ""
    if isinstance(breeds, dict):
        return tuple(
            sorted((str(k).lower(), str(v).lower()) for k, v in breeds.items())
        )
    return str(breeds).lower()
