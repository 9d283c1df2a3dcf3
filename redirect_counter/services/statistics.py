"""
Redirect statistics: per-key counters read and reset by admins, bumped by the pipeline.
Keys are subdomain labels, or "@" + domain for whole-domain redirects.
"""
from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from redirect_counter.persistence.db import Tenant, TenantRegistry
from redirect_counter.persistence.models import Statistic
from redirect_counter.persistence.repos import StatisticRepo

logger = logging.getLogger(__name__)

DOMAIN_KEY_PREFIX = "@"


def domain_key(domain: str) -> str:
    return DOMAIN_KEY_PREFIX + domain


def statistic_to_dict(s: Statistic) -> dict:
    return {
        "key": s.key,
        "target_path": s.target_path,
        "redirect_count": s.redirect_count,
        "last_redirect_at": s.last_redirect_at.isoformat() if s.last_redirect_at else None,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "domain_redirect": s.key.startswith(DOMAIN_KEY_PREFIX),
    }


class StatisticsService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = StatisticRepo(db)

    def record(self, key: str, target_path: str) -> None:
        """Increment the counter for key (creating it on first hit). Raises SQLAlchemyError on storage failure."""
        self.repo.record(key, target_path)

    def get_by_key(self, key: str) -> Statistic | None:
        return self.repo.by_key(key)

    def list(self, order_by: str = "count", order: str = "DESC", limit: int = 50, offset: int = 0) -> list[Statistic]:
        return self.repo.list(order_by=order_by, order=order, limit=limit, offset=offset)

    def total_count(self) -> int:
        return self.repo.count()

    def total_redirects(self) -> int:
        return int(self.repo.total_redirects())

    def top(self, n: int = 10) -> list[Statistic]:
        return self.repo.list(order_by="count", order="DESC", limit=n)

    def recent(self, n: int = 10) -> list[Statistic]:
        return self.repo.list(order_by="last", order="DESC", limit=n)

    def summary(self) -> dict:
        last = self.repo.last_redirect_at()
        return {
            "distinct_key_count": self.total_count(),
            "total_redirects": self.total_redirects(),
            "last_redirect_at": last.isoformat() if last else None,
        }

    def reset_one(self, key: str) -> None:
        self.repo.delete_key(key)
        logger.info(f"Reset statistics for '{key}'")

    def reset_all(self) -> None:
        self.repo.delete_all()
        logger.info("Reset all statistics")


def network_summary(registry: TenantRegistry, top_n: int = 5) -> dict:
    """Aggregate statistics across every tenant database."""
    def collect(tenant: Tenant, db: Session) -> dict:
        service = StatisticsService(db)
        return {
            "tenant": tenant.name,
            "site_url": tenant.site_url,
            **service.summary(),
            "top": [statistic_to_dict(s) for s in service.top(top_n)],
        }

    sites = registry.for_each_tenant(collect)
    return {
        "total_redirects": sum(site["total_redirects"] for site in sites),
        "distinct_key_count": sum(site["distinct_key_count"] for site in sites),
        "sites": sites,
    }
