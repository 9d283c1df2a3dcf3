"""
Increment-or-insert for the statistics table.

Shared by the statistics service and the early domain redirect middleware, so it
only needs something with an ``execute`` method (an ORM Session or a Core Connection).
"""
from datetime import datetime
from sqlalchemy.dialects.sqlite import insert
from redirect_counter.persistence.models import Statistic, utcnow

statistics = Statistic.__table__


def increment_or_insert(conn, key: str, target_path: str, now: datetime | None = None) -> None:
    """
    Bump the counter for key, creating the row with a count of 1 on first hit.
    A single upsert against the UNIQUE key, so concurrent first hits cannot
    produce two rows.
    """
    now = now or utcnow()
    target_path = target_path[:255]
    stmt = insert(statistics).values(
        key=key,
        target_path=target_path,
        redirect_count=1,
        last_redirect_at=now,
        created_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[statistics.c.key],
        set_={
            "redirect_count": statistics.c.redirect_count + 1,
            "last_redirect_at": now,
            "target_path": target_path,
        },
    )
    conn.execute(stmt)
