"""
Repository layer - data access for animals, organizations, users and seen marks.

Repositories never commit; the caller owns the transaction boundary.
"""

from datetime import datetime
from typing import Any, Iterable

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pawreels.datastore.models import (
    AnimalDB,
    OrganizationDB,
    SeenMarkDB,
    UserDB,
    utcnow,
)

# Columns a sync job may overwrite on an existing animal
ANIMAL_MUTABLE_FIELDS = (
    "name",
    "url",
    "type",
    "age",
    "gender",
    "size",
    "status",
    "breeds",
    "colors",
    "photos",
    "videos",
    "contact",
    "attributes",
    "environment",
    "city",
    "state",
    "latitude",
    "longitude",
    "organization_id",
)


class AnimalRepository:
    """Animal records keyed by upstream id."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, animal_id: int) -> AnimalDB | None:
        return await self.session.get(AnimalDB, animal_id)

    async def get_many(self, animal_ids: Iterable[int]) -> dict[int, AnimalDB]:
        """Fetch records with their organization, keyed by id."""
        ids = list(animal_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(AnimalDB)
            .where(AnimalDB.id.in_(ids))
            .options(selectinload(AnimalDB.organization))
        )
        return {animal.id: animal for animal in result.scalars().all()}

    async def existing_ids(self, animal_ids: Iterable[int]) -> set[int]:
        ids = list(animal_ids)
        if not ids:
            return set()
        result = await self.session.execute(select(AnimalDB.id).where(AnimalDB.id.in_(ids)))
        return set(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(AnimalDB))
        return int(result.scalar_one())

    async def create_if_absent(self, fields: dict[str, Any], now: datetime | None = None) -> bool:
        """Insert a new record; an existing id is left untouched. True if created."""
        if await self.get(fields["id"]) is not None:
            return False
        now = now or utcnow()
        self.session.add(
            AnimalDB(**fields, like_count=0, last_seen_at=now, created_at=now)
        )
        await self.session.flush()
        return True

    async def upsert(self, fields: dict[str, Any], now: datetime | None = None) -> bool:
        """Create or refresh a record. True if created, False if updated."""
        now = now or utcnow()
        animal = await self.get(fields["id"])
        if animal is None:
            self.session.add(
                AnimalDB(**fields, like_count=0, last_seen_at=now, created_at=now)
            )
            await self.session.flush()
            return True

        self._apply(animal, fields, now)
        await self.session.flush()
        return False

    def _apply(self, animal: AnimalDB, fields: dict[str, Any], now: datetime) -> None:
        for name in ANIMAL_MUTABLE_FIELDS:
            if name in fields:
                setattr(animal, name, fields[name])
        if animal.last_seen_at is None or now > animal.last_seen_at:
            animal.last_seen_at = now

    async def refresh(self, animal_id: int, fields: dict[str, Any], now: datetime | None = None) -> bool:
        """Overwrite fields of an existing record and bump last_seen_at."""
        animal = await self.get(animal_id)
        if animal is None:
            return False
        self._apply(animal, fields, now or utcnow())
        return True

    async def touch(self, animal_ids: Iterable[int], now: datetime | None = None) -> int:
        """Bump last_seen_at for stored ids. Returns rows touched."""
        ids = list(set(animal_ids))
        if not ids:
            return 0
        now = now or utcnow()
        result = await self.session.execute(
            update(AnimalDB)
            .where(AnimalDB.id.in_(ids), AnimalDB.last_seen_at < now)
            .values(last_seen_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def find_at_risk(
        self,
        cutoff: datetime,
        limit: int,
        exclude_ids: Iterable[int] = (),
    ) -> list[AnimalDB]:
        """Records not seen since cutoff, oldest first."""
        stmt = select(AnimalDB).where(AnimalDB.last_seen_at < cutoff)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(AnimalDB.id.not_in(excluded))
        result = await self.session.execute(
            stmt.order_by(AnimalDB.last_seen_at.asc(), AnimalDB.id.asc()).limit(limit)
        )
        return list(result.scalars().all())

    async def delete_ids(self, animal_ids: Iterable[int]) -> int:
        ids = list(set(animal_ids))
        if not ids:
            return 0
        result = await self.session.execute(
            delete(AnimalDB)
            .where(AnimalDB.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def delete_stale(self, cutoff: datetime) -> int:
        """Delete every record whose last_seen_at is older than cutoff."""
        result = await self.session.execute(
            delete(AnimalDB)
            .where(AnimalDB.last_seen_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        if deleted > 0:
            logger.debug(f"Deleted {deleted} animals not seen since {cutoff.isoformat()}")
        return deleted

    async def find_name_type_collisions(self) -> list[tuple[int, str, str, Any]]:
        """(id, name, type, breeds) of records sharing a name and type with another."""
        groups = (
            select(AnimalDB.name, AnimalDB.type)
            .group_by(AnimalDB.name, AnimalDB.type)
            .having(func.count(AnimalDB.id) > 1)
            .subquery()
        )
        result = await self.session.execute(
            select(AnimalDB.id, AnimalDB.name, AnimalDB.type, AnimalDB.breeds)
            .join(
                groups,
                (AnimalDB.name == groups.c.name) & (AnimalDB.type == groups.c.type),
            )
            .order_by(AnimalDB.id.asc())
        )
        return [tuple(row) for row in result.all()]

    async def coordinates_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        exclude_ids: Iterable[int] = (),
    ) -> list[tuple[int, float, float]]:
        """(id, lat, lon) of located records inside a lat/lon bounding box."""
        stmt = select(AnimalDB.id, AnimalDB.latitude, AnimalDB.longitude).where(
            AnimalDB.latitude.is_not(None),
            AnimalDB.longitude.is_not(None),
            AnimalDB.latitude.between(min_lat, max_lat),
            AnimalDB.longitude.between(min_lon, max_lon),
        )
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(AnimalDB.id.not_in(excluded))
        result = await self.session.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def random_ids(self, limit: int, exclude_ids: Iterable[int] = ()) -> list[int]:
        """Random sample of ids outside exclude_ids."""
        if limit <= 0:
            return []
        stmt = select(AnimalDB.id)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(AnimalDB.id.not_in(excluded))
        result = await self.session.execute(stmt.order_by(func.random()).limit(limit))
        return list(result.scalars().all())


class OrganizationRepository:
    """Organizations referenced by animals."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def existing_ids(self, org_ids: Iterable[str]) -> set[str]:
        ids = list(org_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(OrganizationDB.id).where(OrganizationDB.id.in_(ids))
        )
        return set(result.scalars().all())

    async def upsert(self, org: dict[str, Any]) -> OrganizationDB:
        """Create or update an organization from its upstream document."""
        org_db = await self.session.get(OrganizationDB, org["id"])
        values = {
            "name": org.get("name") or "",
            "email": org.get("email"),
            "phone": org.get("phone"),
            "address": org.get("address"),
            "url": org.get("url") or "",
        }
        if org_db:
            for name, value in values.items():
                setattr(org_db, name, value)
            org_db.updated_at = utcnow()
        else:
            org_db = OrganizationDB(id=org["id"], **values)
            self.session.add(org_db)

        await self.session.flush()
        return org_db

    async def prune_orphans(self) -> int:
        """Delete organizations no animal references any more."""
        referenced = select(AnimalDB.organization_id).where(
            AnimalDB.organization_id.is_not(None)
        )
        result = await self.session.execute(
            delete(OrganizationDB)
            .where(OrganizationDB.id.not_in(referenced))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class UserRepository:
    """Users identified by a client-generated UUID."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_uuid(self, uuid: str) -> UserDB | None:
        result = await self.session.execute(select(UserDB).where(UserDB.uuid == uuid))
        return result.scalar_one_or_none()

    async def get_or_create(self, uuid: str) -> UserDB:
        user = await self.get_by_uuid(uuid)
        if user is None:
            user = UserDB(uuid=uuid)
            self.session.add(user)
            await self.session.flush()
            logger.debug(f"Created user {user.id} for {uuid}")
        return user


class SeenMarkRepository:
    """Append-only (user, animal) seen facts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def seen_animal_ids(self, user_id: int) -> set[int]:
        result = await self.session.execute(
            select(SeenMarkDB.animal_id).where(SeenMarkDB.user_id == user_id)
        )
        return set(result.scalars().all())

    async def mark_seen(self, user_id: int, animal_ids: Iterable[int]) -> int:
        """Insert seen marks, skipping duplicates. Returns rows inserted."""
        ids = list(dict.fromkeys(animal_ids))
        if not ids:
            return 0
        result = await self.session.execute(
            select(SeenMarkDB.animal_id).where(
                SeenMarkDB.user_id == user_id, SeenMarkDB.animal_id.in_(ids)
            )
        )
        already = set(result.scalars().all())
        new_ids = [animal_id for animal_id in ids if animal_id not in already]
        now = utcnow()
        for animal_id in new_ids:
            self.session.add(SeenMarkDB(user_id=user_id, animal_id=animal_id, seen_at=now))
        if new_ids:
            await self.session.flush()
        return len(new_ids)
