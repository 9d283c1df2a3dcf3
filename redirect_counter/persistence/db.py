"""
Database configuration and session management.
Provides SQLAlchemy engines per tenant, session factories, and context managers for database operations.
"""
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar
from urllib.parse import urlparse
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from redirect_counter.config import Settings

T = TypeVar("T")

class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def make_engine(db_path: str) -> Engine:
    """Create a SQLite engine usable from the request thread pool."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _record):
        # Concurrent requests write counters; let readers proceed while a writer holds the lock
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


class DBSession:
    """
    Context manager for database sessions with automatic transaction handling.
    Ensures proper rollback on exceptions and commit on success.
    """
    def __init__(self, factory: sessionmaker):
        self.factory = factory

    def __enter__(self) -> Session:
        self.db = self.factory()
        return self.db

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type:
                # Rollback transaction on any exception
                self.db.rollback()
            else:
                # Commit transaction on successful completion
                self.db.commit()
        finally:
            # Always close the session
            self.db.close()


@dataclass(frozen=True)
class Tenant:
    """One site served by this deployment, with its own database and content."""
    name: str
    site_url: str
    db_path: str
    content_path: str

    @property
    def domain(self) -> str:
        host = (urlparse(self.site_url).hostname or "").lower()
        return host[4:] if host.startswith("www.") else host


class TenantRegistry:
    """
    Engines and session factories keyed by tenant name, created by init_all or on first use.
    Holds no notion of a "current" tenant; callers always name the tenant they want.
    """
    def __init__(self, config: Settings):
        self.config = config
        self._tenants: dict[str, Tenant] = {}
        self._engines: dict[str, Engine] = {}
        self._factories: dict[str, sessionmaker] = {}
        # Request handlers call engine() and session() from threadpool workers
        self._lock = threading.RLock()

        primary = config.PRIMARY_TENANT
        self._tenants[primary] = Tenant(
            name=primary,
            site_url=config.SITE_URL,
            db_path=config.tenant_db_path(primary),
            content_path=config.content_path(primary),
        )
        for name, site_url in config.TENANTS.items():
            if name == primary:
                continue
            self._tenants[name] = Tenant(
                name=name,
                site_url=site_url,
                db_path=config.tenant_db_path(name),
                content_path=config.content_path(name),
            )

    @property
    def primary(self) -> Tenant:
        return self._tenants[self.config.PRIMARY_TENANT]

    def names(self) -> list[str]:
        return list(self._tenants)

    def get(self, name: str) -> Tenant | None:
        return self._tenants.get(name)

    def engine(self, name: str) -> Engine:
        with self._lock:
            if name not in self._engines:
                self._engines[name] = make_engine(self._tenants[name].db_path)
            return self._engines[name]

    def session(self, name: str) -> DBSession:
        with self._lock:
            if name not in self._factories:
                self._factories[name] = sessionmaker(
                    bind=self.engine(name), autoflush=False, autocommit=False, expire_on_commit=False
                )
            factory = self._factories[name]
        return DBSession(factory)

    def tenant_for_host(self, host: str) -> Tenant:
        """Pick the tenant whose site domain the host belongs to; unknown hosts go to the primary tenant."""
        host = host.split(":", 1)[0].lower()
        if host.startswith("www."):
            host = host[4:]
        best: Tenant | None = None
        for tenant in self._tenants.values():
            if tenant.domain and (host == tenant.domain or host.endswith("." + tenant.domain)):
                # Most specific domain wins (shop.example.com over example.com)
                if best is None or len(tenant.domain) > len(best.domain):
                    best = tenant
        return best or self.primary

    def for_each_tenant(self, callback: Callable[[Tenant, Session], T]) -> list[T]:
        """Run callback once per tenant inside that tenant's own session."""
        results: list[T] = []
        for name, tenant in self._tenants.items():
            with self.session(name) as db:
                results.append(callback(tenant, db))
        return results

    def init_all(self) -> None:
        """Create tables and seed default settings for every tenant (idempotent)."""
        from redirect_counter.persistence.models import init_db
        from redirect_counter.services.options import ensure_default_options
        for name in self._tenants:
            init_db(self.engine(name))
            with self.session(name) as db:
                ensure_default_options(db)

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
        self._factories.clear()
