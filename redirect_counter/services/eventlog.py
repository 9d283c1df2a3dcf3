"""
Event log of individual redirect/serve decisions with anonymized visitor data.
"""
import ipaddress
import logging
from datetime import timedelta
from sqlalchemy.orm import Session
from redirect_counter.persistence.models import LogEntry, utcnow
from redirect_counter.persistence.repos import LogRepo
from redirect_counter.services.context import RequestContext
from redirect_counter.services.options import RouterOptions
from redirect_counter.services.statistics import DOMAIN_KEY_PREFIX

logger = logging.getLogger(__name__)

MAX_HEADER_LENGTH = 500


def anonymize_ip(ip: str | None) -> str:
    """
    Zero the host part of an address: last octet for IPv4, last 80 bits for IPv6.
    Anything that is not a valid address becomes "".
    """
    if not ip:
        return ""
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return ""
    if addr.version == 4:
        return str(ipaddress.IPv4Address(int(addr) & 0xFFFFFF00))
    return str(ipaddress.IPv6Address(int(addr) & ~((1 << 80) - 1)))


class LogFilter:
    """LIKE patterns for the two halves of the shared key space."""
    @staticmethod
    def domain_redirects() -> dict:
        return {"key_like": DOMAIN_KEY_PREFIX + "%"}

    @staticmethod
    def subdomains() -> dict:
        return {"key_not_like": DOMAIN_KEY_PREFIX + "%"}

    @classmethod
    def by_type(cls, kind: str | None) -> dict:
        if kind == "domain":
            return cls.domain_redirects()
        if kind == "subdomain":
            return cls.subdomains()
        return {}


def log_to_dict(entry: LogEntry) -> dict:
    return {
        "id": entry.id,
        "key": entry.key,
        "target_path": entry.target_path,
        "source_url": entry.source_url,
        "user_agent": entry.user_agent,
        "ip_address": entry.ip_address,
        "referer": entry.referer,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class EventLogger:
    def __init__(self, db: Session, options: RouterOptions | None = None):
        self.db = db
        self.repo = LogRepo(db)
        self.options = options or RouterOptions()

    def log(self, key: str, target_path: str, ctx: RequestContext) -> LogEntry | None:
        """Append a row for this request, unless logging is disabled."""
        if not self.options.logging_enabled:
            return None
        entry = LogEntry(
            key=key,
            target_path=target_path[:255],
            source_url=ctx.source_url,
            user_agent=ctx.user_agent[:MAX_HEADER_LENGTH],
            ip_address=anonymize_ip(ctx.client_ip),
            referer=ctx.referer[:MAX_HEADER_LENGTH],
        )
        return self.repo.create(entry)

    def get_by_id(self, id: int) -> LogEntry | None:
        return self.repo.get(id)

    def list(self, key_like: str | None = None, key_not_like: str | None = None, order_by: str = "created_at",
             order: str = "DESC", limit: int = 50, offset: int = 0) -> list[LogEntry]:
        return self.repo.list(key_like=key_like, key_not_like=key_not_like, order_by=order_by,
                              order=order, limit=limit, offset=offset)

    def total_count(self, key_like: str | None = None, key_not_like: str | None = None) -> int:
        return self.repo.count(key_like=key_like, key_not_like=key_not_like)

    def clear_all(self) -> None:
        self.repo.delete_all()
        logger.info("Cleared all log entries")

    def delete_older_than(self, days: int) -> int:
        cutoff = utcnow() - timedelta(days=days)
        deleted = self.repo.delete_before(cutoff)
        logger.info(f"Deleted {deleted} log entries older than {days} days")
        return deleted

    def run_retention(self, options: RouterOptions | None = None) -> int:
        """Prune according to log_retention_days; 0 keeps logs forever."""
        days = (options or self.options).log_retention_days
        if days <= 0:
            return 0
        return self.delete_older_than(days)
