from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from ..core.config import Settings
from .errors import ConnectionFailure
from .identifiers import PUBLIC_TENANT


logger = logging.getLogger(__name__)


def tenant_database_url(base_url: str, schema: str) -> str:
    """Parameterize ``base_url`` so every connection lands in ``schema``.

    On PostgreSQL this pins ``search_path`` through the libpq ``options``
    parameter; other dialects get the schema from the engine instead.
    """
    url = make_url(base_url)
    if url.get_backend_name() == "postgresql":
        url = url.update_query_dict({"options": f"-csearch_path={schema}"})
    return url.render_as_string(hide_password=False)


class TenantClient:
    """A connected SQLAlchemy engine bound to one tenant schema."""

    def __init__(
        self,
        tenant_id: str,
        url: str | None = None,
        *,
        settings: Settings | None = None,
        engine: Engine | None = None,
    ) -> None:
        if url is None and engine is None:
            raise ValueError("TenantClient needs either a url or an engine")
        self.tenant_id = tenant_id
        self.url = url
        self._settings = settings
        self._engine = engine
        self._session_factory: sessionmaker | None = None

    @classmethod
    def for_tenant(cls, settings: Settings, tenant_id: str) -> "TenantClient":
        if not settings.DATABASE_URL:
            raise ConnectionFailure("DATABASE_URL is not configured", tenant_id)
        return cls(
            tenant_id,
            tenant_database_url(settings.DATABASE_URL, tenant_id),
            settings=settings,
        )

    @property
    def is_connected(self) -> bool:
        return self._session_factory is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None or not self.is_connected:
            raise RuntimeError(f"Client for tenant '{self.tenant_id}' is not connected")
        return self._engine

    async def connect(self) -> None:
        await run_in_threadpool(self._connect)

    async def disconnect(self) -> None:
        await run_in_threadpool(self._dispose)

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise RuntimeError(f"Client for tenant '{self.tenant_id}' is not connected")
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _connect(self) -> None:
        if self._engine is None:
            self._engine = self._create_engine()
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            self._dispose()
            raise
        self._session_factory = sessionmaker(bind=self._engine, autocommit=False, autoflush=False)

    def _dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def _create_engine(self) -> Engine:
        assert self.url is not None
        url = make_url(self.url)
        backend = url.get_backend_name()
        kwargs: dict[str, Any] = {"pool_pre_ping": True, "future": True}
        if self._settings is not None:
            kwargs["echo"] = self._settings.DB_ECHO
            if backend != "sqlite":
                kwargs.update(
                    pool_size=self._settings.DB_POOL_SIZE,
                    max_overflow=self._settings.DB_MAX_OVERFLOW,
                    pool_timeout=self._settings.DB_POOL_TIMEOUT,
                )
        engine = create_engine(url, **kwargs)
        if backend != "postgresql" and self.tenant_id != PUBLIC_TENANT:
            engine = engine.execution_options(schema_translate_map={None: self.tenant_id})
        return engine

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "disconnected"
        return f"<TenantClient tenant={self.tenant_id!r} {state}>"
