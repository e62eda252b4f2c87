from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from ..models import format_color

EntityLookup = Callable[[str], Awaitable[Any]]

ENTITY_KINDS = frozenset({"user", "role", "channel", "everyone"})
_KIND_PREFIX = {"user": "@", "role": "@", "channel": "#", "everyone": "@"}


def _log(message: str) -> None:
    from ..runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


@dataclass(frozen=True)
class ResolvedEntity:
    kind: str
    id: str
    name: str
    exists: bool = True
    color: str | None = None
    avatar_url: str | None = None

    @property
    def display(self) -> str:
        return f"{_KIND_PREFIX.get(self.kind, '')}{self.name}"

    def to_data(self) -> dict[str, Any]:
        data = asdict(self)
        data["display"] = self.display
        return {k: v for k, v in data.items() if v is not None}


def missing_entity(kind: str, entity_id: str) -> ResolvedEntity:
    return ResolvedEntity(kind=kind, id=entity_id, name=entity_id, exists=False)


def _field(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


def _entity_from_lookup(kind: str, entity_id: str, value: Any) -> ResolvedEntity:
    name = _field(value, "name")
    if not isinstance(name, str) or not name.strip():
        return missing_entity(kind, entity_id)
    avatar = _field(value, "avatar_url")
    return ResolvedEntity(
        kind=kind,
        id=entity_id,
        name=name.strip(),
        color=format_color(_field(value, "color")),
        avatar_url=avatar if isinstance(avatar, str) and avatar else None,
    )


class EntityResolver:
    """Run-scoped, memoized mention lookups.

    Each ``(kind, id)`` key triggers at most one call to the underlying
    lookup; concurrent callers for the same key await the same task.
    Lookup errors and empty results become ``exists=False`` entities.
    """

    def __init__(
        self,
        *,
        resolve_user: EntityLookup | None = None,
        resolve_role: EntityLookup | None = None,
        resolve_channel: EntityLookup | None = None,
    ):
        self._lookups: dict[str, EntityLookup | None] = {
            "user": resolve_user,
            "role": resolve_role,
            "channel": resolve_channel,
        }
        self._cache: dict[tuple[str, str], ResolvedEntity] = {}
        self._pending: dict[tuple[str, str], asyncio.Task[ResolvedEntity]] = {}

    async def resolve(self, kind: str, entity_id: str) -> ResolvedEntity:
        key = (kind, str(entity_id))
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._lookup(*key))
            self._pending[key] = task
        return await asyncio.shield(task)

    async def _lookup(self, kind: str, entity_id: str) -> ResolvedEntity:
        key = (kind, entity_id)
        try:
            entity = await self._call(kind, entity_id)
            self._cache[key] = entity
            return entity
        finally:
            self._pending.pop(key, None)

    async def _call(self, kind: str, entity_id: str) -> ResolvedEntity:
        if kind == "everyone":
            return ResolvedEntity(kind=kind, id=entity_id, name=entity_id)
        lookup = self._lookups.get(kind)
        if lookup is None:
            return missing_entity(kind, entity_id)
        try:
            value = await lookup(entity_id)
        except Exception as exc:
            _log(f"  {kind} lookup failed for {entity_id}: {type(exc).__name__}: {exc}")
            return missing_entity(kind, entity_id)
        if value is None:
            _log(f"  {kind} not found: {entity_id}")
            return missing_entity(kind, entity_id)
        return _entity_from_lookup(kind, entity_id, value)

    def get(self, kind: str, entity_id: str) -> ResolvedEntity | None:
        return self._cache.get((kind, str(entity_id)))

    def cancel_pending(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            f"{kind}:{entity_id}": entity.to_data()
            for (kind, entity_id), entity in sorted(self._cache.items())
        }
