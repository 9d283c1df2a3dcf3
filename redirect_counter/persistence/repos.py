from datetime import datetime
from sqlalchemy import asc, desc, delete, func, select
from sqlalchemy.orm import Session
from redirect_counter.persistence.models import LogEntry, Mapping, Option, Statistic
from redirect_counter.persistence.counter import increment_or_insert

def _direction(order: str):
    return asc if str(order).upper() == "ASC" else desc

class MappingRepo:
    ORDER_COLUMNS = {
        "subdomain": Mapping.subdomain,
        "resource_id": Mapping.resource_id,
        "created_at": Mapping.created_at,
        "updated_at": Mapping.updated_at,
    }

    def __init__(self, db: Session): self.db = db
    def list(self, active_only: bool = False, order_by: str = "subdomain", order: str = "ASC",
             limit: int = 50, offset: int = 0) -> list[Mapping]:
        column = self.ORDER_COLUMNS.get(order_by, Mapping.subdomain)
        stmt = select(Mapping)
        if active_only:
            stmt = stmt.where(Mapping.active == True)
        stmt = stmt.order_by(_direction(order)(column)).limit(max(limit, 0)).offset(max(offset, 0))
        return list(self.db.scalars(stmt))
    def count(self, active_only: bool = False) -> int:
        stmt = select(func.count(Mapping.id))
        if active_only:
            stmt = stmt.where(Mapping.active == True)
        return self.db.scalar(stmt) or 0
    def get(self, id: int) -> Mapping | None:
        return self.db.get(Mapping, id)
    def active_by_subdomain(self, subdomain: str) -> Mapping | None:
        return self.db.scalar(select(Mapping).where(Mapping.subdomain == subdomain, Mapping.active == True))
    def exists(self, subdomain: str, exclude_id: int | None = None) -> bool:
        stmt = select(Mapping.id).where(Mapping.subdomain == subdomain)
        if exclude_id:
            stmt = stmt.where(Mapping.id != exclude_id)
        return self.db.scalar(stmt) is not None
    def create(self, m: Mapping) -> Mapping:
        self.db.add(m); self.db.commit(); self.db.refresh(m); return m
    def update(self, m: Mapping) -> Mapping:
        self.db.add(m); self.db.commit(); self.db.refresh(m); return m
    def delete(self, id: int) -> None:
        self.db.execute(delete(Mapping).where(Mapping.id == id))
        self.db.commit()

class StatisticRepo:
    ORDER_COLUMNS = {
        "key": Statistic.key,
        "count": Statistic.redirect_count,
        "last": Statistic.last_redirect_at,
        "created": Statistic.created_at,
    }

    def __init__(self, db: Session): self.db = db
    def record(self, key: str, target_path: str) -> None:
        increment_or_insert(self.db, key, target_path)
        self.db.commit()
    def by_key(self, key: str) -> Statistic | None:
        # Counters change through Core upserts, so refresh anything already in the identity map
        return self.db.scalar(select(Statistic).where(Statistic.key == key).execution_options(populate_existing=True))
    def list(self, order_by: str = "count", order: str = "DESC", limit: int = 50, offset: int = 0) -> list[Statistic]:
        column = self.ORDER_COLUMNS.get(order_by, Statistic.redirect_count)
        stmt = (select(Statistic)
                .order_by(_direction(order)(column), Statistic.id)
                .limit(max(limit, 0)).offset(max(offset, 0))
                .execution_options(populate_existing=True))
        return list(self.db.scalars(stmt))
    def count(self) -> int:
        return self.db.scalar(select(func.count(Statistic.id))) or 0
    def total_redirects(self) -> int:
        return self.db.scalar(select(func.coalesce(func.sum(Statistic.redirect_count), 0))) or 0
    def last_redirect_at(self) -> datetime | None:
        return self.db.scalar(select(func.max(Statistic.last_redirect_at)))
    def delete_key(self, key: str) -> None:
        self.db.execute(delete(Statistic).where(Statistic.key == key))
        self.db.commit()
    def delete_all(self) -> None:
        self.db.execute(delete(Statistic))
        self.db.commit()

class LogRepo:
    ORDER_COLUMNS = {
        "key": LogEntry.key,
        "created_at": LogEntry.created_at,
    }

    def __init__(self, db: Session): self.db = db
    def create(self, entry: LogEntry) -> LogEntry:
        self.db.add(entry); self.db.commit(); self.db.refresh(entry); return entry
    def get(self, id: int) -> LogEntry | None:
        return self.db.get(LogEntry, id)
    def _filtered(self, stmt, key_like: str | None, key_not_like: str | None):
        if key_like:
            stmt = stmt.where(LogEntry.key.like(key_like))
        if key_not_like:
            stmt = stmt.where(LogEntry.key.not_like(key_not_like))
        return stmt
    def list(self, key_like: str | None = None, key_not_like: str | None = None, order_by: str = "created_at",
             order: str = "DESC", limit: int = 50, offset: int = 0) -> list[LogEntry]:
        column = self.ORDER_COLUMNS.get(order_by, LogEntry.created_at)
        stmt = self._filtered(select(LogEntry), key_like, key_not_like)
        stmt = (stmt.order_by(_direction(order)(column), _direction(order)(LogEntry.id))
                .limit(max(limit, 0)).offset(max(offset, 0)))
        return list(self.db.scalars(stmt))
    def count(self, key_like: str | None = None, key_not_like: str | None = None) -> int:
        stmt = self._filtered(select(func.count(LogEntry.id)), key_like, key_not_like)
        return self.db.scalar(stmt) or 0
    def delete_all(self) -> None:
        self.db.execute(delete(LogEntry))
        self.db.commit()
    def delete_before(self, cutoff: datetime) -> int:
        result = self.db.execute(delete(LogEntry).where(LogEntry.created_at < cutoff))
        self.db.commit()
        return result.rowcount or 0

class OptionRepo:
    def __init__(self, db: Session): self.db = db
    def get(self, name: str) -> dict | None:
        row = self.db.scalar(select(Option).where(Option.name == name))
        return row.value if row else None
    def set(self, name: str, value: dict) -> None:
        row = self.db.scalar(select(Option).where(Option.name == name))
        if row is None:
            row = Option(name=name, value=value)
        else:
            row.value = value
        self.db.add(row); self.db.commit()
