from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import JSON, DateTime, Integer, String, delete, select
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from tenant_config.core.database import Base
from tenant_config.metrics import observe_cache_migration_reset
from tenant_config.tenants.schemas import PersistedCacheEnvelope


logger = logging.getLogger("tenant_config.cache")

ACTIVE_POINTER_KEY = "current_client_id"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(Base):
    __tablename__ = "tenant_config_cache_entry"

    store_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class ConfigCache:
    def __init__(self, session_factory: sessionmaker[Session], store_name: str = "system-client-storage") -> None:
        self.session_factory = session_factory
        self.store_name = store_name

    def load_envelope(self) -> PersistedCacheEnvelope | None:
        with self.session_factory() as session:
            row = session.get(CacheEntry, self.store_name)
            if row is None:
                return None
            version, payload = row.version, row.payload
        try:
            return PersistedCacheEnvelope.model_validate({"version": version, "state": payload or {}})
        except ValidationError as exc:
            logger.warning("discarding unreadable cache envelope", extra={"operation": self.store_name, "error": str(exc)})
            observe_cache_migration_reset()
            return None

    def save_envelope(self, envelope: PersistedCacheEnvelope) -> None:
        self._replace(self.store_name, envelope.version, envelope.state)

    def load_active_pointer(self) -> str | None:
        with self.session_factory() as session:
            row = session.get(CacheEntry, ACTIVE_POINTER_KEY)
            if row is None:
                return None
            value = row.payload.get("value") if isinstance(row.payload, dict) else None
            return str(value) if value is not None else None

    def save_active_pointer(self, tenant_id: str | None) -> None:
        if tenant_id is None:
            with self.session_factory() as session:
                session.execute(delete(CacheEntry).where(CacheEntry.store_key == ACTIVE_POINTER_KEY))
                session.commit()
            return
        self._replace(ACTIVE_POINTER_KEY, 0, {"value": tenant_id})

    def clear(self) -> None:
        with self.session_factory() as session:
            session.execute(delete(CacheEntry).where(CacheEntry.store_key.in_([self.store_name, ACTIVE_POINTER_KEY])))
            session.commit()

    def store_keys(self) -> list[str]:
        with self.session_factory() as session:
            return list(session.scalars(select(CacheEntry.store_key).order_by(CacheEntry.store_key)))

    def _replace(self, store_key: str, version: int, payload: dict[str, Any]) -> None:
        with self.session_factory() as session:
            try:
                row = session.get(CacheEntry, store_key)
                if row is None:
                    session.add(CacheEntry(store_key=store_key, version=version, payload=payload))
                else:
                    row.version = version
                    row.payload = payload
                    row.updated_at = utcnow()
                session.commit()
            except Exception:
                session.rollback()
                logger.exception("cache_write_failed", extra={"operation": store_key})
                raise
