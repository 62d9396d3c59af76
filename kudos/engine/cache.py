"""
kudos.engine.cache — In-Memory Settings & Badge Cache
======================================================

Every reward evaluation reads economy tuning (``settings`` table) and the
active badge catalogue, so both live in memory as one immutable
:class:`CacheSnapshot`.  A reload builds a new snapshot and swaps it in;
readers never see a half-loaded partition.

Operators reload after editing either table, through
:meth:`ConfigCache.handle_notify` or ``POST /api/admin/cache/reload``.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from kudos.database.models import Badge, Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

RELOADABLE_TABLES: frozenset[str] = frozenset({"settings", "badges"})

_FALSE_STRINGS = frozenset({"", "0", "false", "no", "off"})

V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheSnapshot:
    settings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    badges: tuple[Badge, ...] = ()


def _parse_value(raw: str) -> Any:
    """Settings are stored as JSON; a bare string that is not JSON is kept as is."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


class ConfigCache:
    """Thread-safe snapshot of settings and active badges.

    Usage:
        cache = ConfigCache(engine)
        cache.load_all()

        post_points = cache.get_int("rewards.post_points", default=5)
        badges = cache.get_active_badges()
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._swap_lock = threading.Lock()
        self._snapshot = CacheSnapshot()

    @property
    def snapshot(self) -> CacheSnapshot:
        return self._snapshot

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load both partitions.  Call on startup."""
        self._load_settings()
        self._load_badges()
        logger.info(
            "ConfigCache loaded: %d settings, %d active badges",
            len(self._snapshot.settings),
            len(self._snapshot.badges),
        )

    def _load_settings(self) -> None:
        with Session(self._engine) as session:
            parsed = {
                row.key: _parse_value(row.value_json)
                for row in session.scalars(select(Setting))
            }
        with self._swap_lock:
            self._snapshot = replace(self._snapshot, settings=MappingProxyType(parsed))

    def _load_badges(self) -> None:
        with Session(self._engine) as session:
            badges = session.scalars(
                select(Badge).where(Badge.active.is_(True)).order_by(Badge.id)
            ).all()
            session.expunge_all()
        with self._swap_lock:
            self._snapshot = replace(self._snapshot, badges=tuple(badges))

    def handle_notify(self, table_name: str) -> None:
        """Reload the partition backing *table_name* (``settings`` or ``badges``).

        Raises ValueError for any other table.
        """
        table_name = table_name.strip().lower()
        if table_name not in RELOADABLE_TABLES:
            raise ValueError(
                f"Invalid table name for reload: '{table_name}'. "
                f"Allowed: {sorted(RELOADABLE_TABLES)}"
            )
        logger.info("Config cache reload requested for table: %s", table_name)
        if table_name == "settings":
            self._load_settings()
        else:
            self._load_badges()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_active_badges(self) -> list[Badge]:
        return list(self._snapshot.badges)

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Parsed JSON value for *key*, or *default*."""
        return self._snapshot.settings.get(key, default)

    def _coerced(self, key: str, default: V, cast: Callable[[Any], V]) -> V:
        value = self.get_setting(key)
        if value is None:
            return default
        try:
            return cast(value)
        except (TypeError, ValueError):
            logger.warning("Setting %s=%r is not a valid %s", key, value, type(default).__name__)
            return default

    def get_int(self, key: str, default: int = 0) -> int:
        return self._coerced(key, default, int)

    def get_float(self, key: str, default: float = 0.0) -> float:
        return self._coerced(key, default, float)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_setting(key)
        if value is None:
            return default
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_STRINGS
        return bool(value)
