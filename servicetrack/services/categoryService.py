"""
Category name lookups for map markers.

Resolves ``(category name, parent category name)`` pairs through an
injected ``TTLCache`` so repeated map requests do not re-query the
category tree. Call ``invalidate`` after editing categories.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable

from servicetrack.core.cache import TTLCache

logger = logging.getLogger(__name__)

CategoryNames = tuple[str | None, str | None]


class CategoryDirectory:
    def __init__(self, store, cache: TTLCache[uuid.UUID, CategoryNames]) -> None:
        self._store = store
        self._cache = cache

    async def resolve(self, category_ids: Iterable[uuid.UUID | None]) -> dict[uuid.UUID, CategoryNames]:
        wanted = {cid for cid in category_ids if cid is not None}
        resolved: dict[uuid.UUID, CategoryNames] = {}
        missing: set[uuid.UUID] = set()
        for cid in wanted:
            cached = self._cache.get(cid)
            if cached is None:
                missing.add(cid)
            else:
                resolved[cid] = cached

        if not missing:
            return resolved

        categories = await self._store.get_categories(missing)
        parent_ids = {c.parent_id for c in categories.values() if c.parent_id is not None}
        parents = await self._store.get_categories(parent_ids - set(categories)) if parent_ids else {}
        known = {**parents, **categories}

        for cid in missing:
            category = categories.get(cid)
            if category is None:
                names: CategoryNames = (None, None)
            else:
                parent = known.get(category.parent_id) if category.parent_id else None
                names = (category.name, parent.name if parent is not None else None)
            self._cache.put(cid, names)
            resolved[cid] = names

        logger.debug("Resolved %d categories (%d from cache)", len(resolved), len(resolved) - len(missing))
        return resolved

    def invalidate(self, category_id: uuid.UUID | None = None) -> None:
        self._cache.invalidate(category_id)
