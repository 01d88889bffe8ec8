from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from tenant_config.core.config import Settings, get_settings
from tenant_config.core.database import build_engine, build_session_factory
from tenant_config.logging import configure_logging
from tenant_config.notifications import Notifier
from tenant_config.otel import setup_otel
from tenant_config.tenants.cache import ConfigCache
from tenant_config.tenants.repository import ConfigRepository
from tenant_config.tenants.transport import SessionTokenProvider, TenantTransport, build_transport


def build_repository(
    session: SessionTokenProvider,
    *,
    settings: Settings | None = None,
    transport: TenantTransport | None = None,
    session_factory: sessionmaker[Session] | None = None,
    notifier: Notifier | None = None,
    configure_observability: bool = True,
) -> ConfigRepository:
    settings = settings or get_settings()
    if configure_observability:
        configure_logging()
        setup_otel(settings.app_name, settings.otel_enabled)

    cache = ConfigCache(
        session_factory or build_session_factory(build_engine(settings.cache_database_url)),
        store_name=settings.cache_store_name,
    )
    return ConfigRepository(
        transport or build_transport(settings),
        cache,
        session,
        notifier=notifier,
    )
