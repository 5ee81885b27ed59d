"""
Order Store
===========

Async SQLAlchemy data access for orders, live locations, job listings and
categories. Every method opens its own session from the injected
``async_sessionmaker``, commits, and then publishes a ``ChangeEvent`` so
realtime subscribers can re-fetch.

Status changes are conditional updates (``WHERE id = ? AND status = ?``):
the row only moves if it is still in the status the caller validated
against, which keeps illegal transitions out of persisted data even when
two actors race.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicetrack.models.base import utcnow
from servicetrack.models.listing import JobListing
from servicetrack.models.location import LiveLocation
from servicetrack.models.order import Order, OrderStatus
from servicetrack.models.profile import Profile, ProfileRole
from servicetrack.models.taxonomy import Category
from servicetrack.realtime.changeFeed import ChangeEvent, ChangeType, InMemoryChangeFeed

logger = logging.getLogger(__name__)

ORDERS_TABLE = Order.__tablename__
LIVE_LOCATIONS_TABLE = LiveLocation.__tablename__


class StoreError(Exception):
    """Raised when a read or write against the relational store fails."""


def row_to_dict(obj: Any) -> dict[str, Any]:
    """JSON-safe snapshot of an ORM instance's column values."""
    data: dict[str, Any] = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.key)
        if isinstance(value, uuid.UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, Decimal):
            value = float(value)
        data[column.key] = value
    return data


class OrderStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: InMemoryChangeFeed,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed

    @property
    def feed(self) -> InMemoryChangeFeed:
        return self._feed

    async def _publish(
        self,
        table: str,
        change: ChangeType,
        row: dict[str, Any],
        old: dict[str, Any] | None = None,
    ) -> None:
        await self._feed.publish(ChangeEvent(table=table, type=change, row=row, old=old))

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    async def get_profile(self, profile_id: uuid.UUID) -> Profile | None:
        try:
            async with self._session_factory() as session:
                return await session.get(Profile, profile_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load profile {profile_id}") from exc

    async def list_available_providers(self, *, city: str | None = None) -> list[Profile]:
        stmt = select(Profile).where(
            Profile.role == ProfileRole.PROVIDER,
            Profile.is_available.is_(True),
        )
        if city:
            stmt = stmt.where(Profile.city.ilike(city))
        stmt = stmt.order_by(Profile.rating_avg.desc(), Profile.name)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("Failed to list providers") from exc

    # -----------------------------------------------------------------------
    # Orders
    # -----------------------------------------------------------------------

    async def insert_order(
        self,
        *,
        client_id: uuid.UUID,
        provider_id: uuid.UUID,
        client_lat: float,
        client_lng: float,
        status: OrderStatus = OrderStatus.REQUESTED,
    ) -> Order:
        order = Order(
            client_id=client_id,
            provider_id=provider_id,
            client_lat=client_lat,
            client_lng=client_lng,
            status=status,
        )
        try:
            async with self._session_factory() as session:
                session.add(order)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to insert order") from exc

        logger.info(
            "Order %s created: client=%s provider=%s", order.id, client_id, provider_id
        )
        await self._publish(ORDERS_TABLE, ChangeType.INSERT, row_to_dict(order))
        return order

    async def get_order(self, order_id: uuid.UUID) -> Order | None:
        try:
            async with self._session_factory() as session:
                return await session.get(Order, order_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load order {order_id}") from exc

    async def list_orders(
        self,
        *,
        client_id: uuid.UUID | None = None,
        provider_id: uuid.UUID | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        """Orders for a client and/or provider, newest first."""
        stmt = select(Order)
        if client_id is not None:
            stmt = stmt.where(Order.client_id == client_id)
        if provider_id is not None:
            stmt = stmt.where(Order.provider_id == provider_id)
        if statuses is not None:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        stmt = stmt.order_by(Order.created_at.desc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("Failed to list orders") from exc

    async def transition_status(
        self,
        order_id: uuid.UUID,
        expected: OrderStatus,
        target: OrderStatus,
    ) -> Order | None:
        """Move an order from ``expected`` to ``target``.

        Returns the updated order, or ``None`` when the row was not in
        ``expected`` status any more (nothing is written in that case).
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == expected)
            .values(status=target, updated_at=utcnow())
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    await session.rollback()
                    return None
                await session.commit()
                order = await session.get(Order, order_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update status of order {order_id}") from exc

        logger.info("Order %s: %s -> %s", order_id, expected.value, target.value)
        if order is not None:
            await self._publish(
                ORDERS_TABLE,
                ChangeType.UPDATE,
                row_to_dict(order),
                old={"id": str(order_id), "status": expected.value},
            )
        return order

    async def update_provider_position(
        self, order_id: uuid.UUID, lat: float, lng: float
    ) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(provider_lat=lat, provider_lng=lng, updated_at=utcnow())
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
                order = await session.get(Order, order_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update position on order {order_id}") from exc

        if order is not None:
            await self._publish(ORDERS_TABLE, ChangeType.UPDATE, row_to_dict(order))

    # -----------------------------------------------------------------------
    # Live locations
    # -----------------------------------------------------------------------

    async def upsert_live_location(
        self, provider_id: uuid.UUID, lat: float, lng: float
    ) -> LiveLocation:
        try:
            async with self._session_factory() as session:
                location = await session.get(LiveLocation, provider_id)
                change = ChangeType.UPDATE
                if location is None:
                    location = LiveLocation(provider_id=provider_id, lat=lat, lng=lng)
                    session.add(location)
                    change = ChangeType.INSERT
                else:
                    location.lat = lat
                    location.lng = lng
                    location.updated_at = utcnow()
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to upsert live location for {provider_id}") from exc

        await self._publish(LIVE_LOCATIONS_TABLE, change, row_to_dict(location))
        return location

    async def delete_live_location(self, provider_id: uuid.UUID) -> bool:
        stmt = delete(LiveLocation).where(LiveLocation.provider_id == provider_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                deleted = result.rowcount > 0
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete live location for {provider_id}") from exc

        if deleted:
            await self._publish(
                LIVE_LOCATIONS_TABLE,
                ChangeType.DELETE,
                {},
                old={"provider_id": str(provider_id)},
            )
        return deleted

    async def get_live_locations(
        self, provider_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, LiveLocation]:
        if not provider_ids:
            return {}
        stmt = select(LiveLocation).where(LiveLocation.provider_id.in_(list(provider_ids)))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return {loc.provider_id: loc for loc in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load live locations") from exc

    # -----------------------------------------------------------------------
    # Job map
    # -----------------------------------------------------------------------

    async def list_job_listings(self, *, city: str | None = None) -> list[JobListing]:
        stmt = select(JobListing).where(JobListing.is_active.is_(True))
        if city:
            stmt = stmt.where(JobListing.city.ilike(city))
        stmt = stmt.order_by(JobListing.created_at.desc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("Failed to list job listings") from exc

    async def get_categories(self, category_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Category]:
        ids = list(set(category_ids))
        if not ids:
            return {}
        stmt = select(Category).where(Category.id.in_(ids))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return {c.id: c for c in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load categories") from exc
