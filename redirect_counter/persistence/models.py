"""
SQLAlchemy database models for the Subdomain Redirect Counter.
Defines the mappings, statistics and logs tables plus the settings blob.
"""
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import DateTime, Engine, String, Integer, Boolean, JSON, Text
from redirect_counter.persistence.db import Base
import enum

def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite stores datetimes without an offset."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class MappingKind(str, enum.Enum):
    """What a subdomain mapping does with the request."""
    RESOURCE = "resource"  # Serve a piece of content in place (URL unchanged)
    URL = "url"            # Redirect to an absolute URL
    HOME = "home"          # Redirect to the site root

VALID_REDIRECT_CODES = (301, 302, 307, 308)

class Mapping(Base):
    """Routing rule for one subdomain."""
    __tablename__ = "mappings"
    id: Mapped[int] = mapped_column(primary_key=True)
    subdomain: Mapped[str] = mapped_column(String(255), unique=True)  # Label only, e.g. "tickets"
    kind: Mapped[str] = mapped_column(String(10), default=MappingKind.RESOURCE.value, index=True)  # MappingKind value
    resource_id: Mapped[str | None] = mapped_column(String(64), index=True)  # Set only for RESOURCE
    redirect_url: Mapped[str | None] = mapped_column(Text)  # Set only for URL
    redirect_code: Mapped[int] = mapped_column(Integer, default=301)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class Statistic(Base):
    """Aggregate redirect counter per subdomain label or "@domain" key."""
    __tablename__ = "statistics"
    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(255), unique=True)
    target_path: Mapped[str] = mapped_column(String(255), default="")  # Last-seen destination description
    redirect_count: Mapped[int] = mapped_column(Integer, default=0, index=True)
    last_redirect_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class LogEntry(Base):
    """Single redirect/serve event with anonymized visitor metadata."""
    __tablename__ = "logs"
    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(255), index=True)
    target_path: Mapped[str] = mapped_column(String(255), default="")
    source_url: Mapped[str] = mapped_column(Text, default="")
    user_agent: Mapped[str | None] = mapped_column(Text)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    referer: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

class Option(Base):
    """Named JSON settings blob (general routing config plus domain redirect rules)."""
    __tablename__ = "options"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(191), unique=True)
    value: Mapped[dict | None] = mapped_column(JSON, default=dict)


def init_db(engine: Engine) -> None:
    """Create all tables for one tenant database (idempotent)."""
    Base.metadata.create_all(bind=engine)
