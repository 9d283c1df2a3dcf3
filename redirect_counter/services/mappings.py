"""
Subdomain mapping service.
Validates admin writes and exposes stored mappings with a typed target
(serve a resource, redirect to a URL, or redirect to the site root).
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Union
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from redirect_counter.persistence.models import Mapping, MappingKind
from redirect_counter.persistence.repos import MappingRepo
from redirect_counter.services.content import ContentResolver
from redirect_counter.services.options import clean_url, coerce_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServeResource:
    resource_id: str
    kind = MappingKind.RESOURCE


@dataclass(frozen=True)
class RedirectUrl:
    url: str
    kind = MappingKind.URL


@dataclass(frozen=True)
class RedirectHome:
    kind = MappingKind.HOME


MappingTarget = Union[ServeResource, RedirectUrl, RedirectHome]


def sanitize_key(value: str | None) -> str:
    """Lowercase label made of a-z, 0-9 and inner hyphens."""
    key = re.sub(r"[^a-z0-9-]", "", str(value or "").strip().lower())
    return key.strip("-")


def target_from_fields(kind: str | None, resource_id=None, redirect_url: str | None = None) -> MappingTarget:
    """Build a target from loose form/API fields. Unknown kinds are treated as "resource"."""
    try:
        kind = MappingKind(kind)
    except ValueError:
        kind = MappingKind.RESOURCE
    if kind is MappingKind.URL:
        return RedirectUrl(url=str(redirect_url or "").strip())
    if kind is MappingKind.HOME:
        return RedirectHome()
    return ServeResource(resource_id=str(resource_id or "").strip())


@dataclass(frozen=True)
class MappingRecord:
    id: int
    subdomain: str
    target: MappingTarget | None  # None when the stored row is unusable
    redirect_code: int
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def redirects(self) -> bool:
        return isinstance(self.target, (RedirectUrl, RedirectHome))

    @classmethod
    def from_row(cls, m: Mapping) -> "MappingRecord":
        target: MappingTarget | None = None
        if m.kind == MappingKind.URL.value and m.redirect_url:
            target = RedirectUrl(url=m.redirect_url)
        elif m.kind == MappingKind.HOME.value:
            target = RedirectHome()
        elif m.kind == MappingKind.RESOURCE.value and m.resource_id:
            target = ServeResource(resource_id=m.resource_id)
        return cls(
            id=m.id,
            subdomain=m.subdomain,
            target=target,
            redirect_code=coerce_code(m.redirect_code, 301),
            active=bool(m.active),
            created_at=m.created_at,
            updated_at=m.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subdomain": self.subdomain,
            "kind": self.target.kind.value if self.target else None,
            "resource_id": self.target.resource_id if isinstance(self.target, ServeResource) else None,
            "redirect_url": self.target.url if isinstance(self.target, RedirectUrl) else None,
            "redirect_code": self.redirect_code,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class MappingWriteResult:
    mapping: MappingRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MappingService:
    def __init__(self, db: Session, content: ContentResolver | None = None):
        self.db = db
        self.repo = MappingRepo(db)
        self.content = content

    def get_by_subdomain(self, subdomain: str) -> MappingRecord | None:
        """Active mapping for the label, or None (inactive mappings behave as absent)."""
        m = self.repo.active_by_subdomain(sanitize_key(subdomain))
        return MappingRecord.from_row(m) if m else None

    def get_by_id(self, id: int) -> MappingRecord | None:
        m = self.repo.get(id)
        return MappingRecord.from_row(m) if m else None

    def list(self, active_only: bool = False, order_by: str = "subdomain", order: str = "ASC",
             limit: int = 50, offset: int = 0) -> list[MappingRecord]:
        rows = self.repo.list(active_only=active_only, order_by=order_by, order=order, limit=limit, offset=offset)
        return [MappingRecord.from_row(m) for m in rows]

    def total_count(self, active_only: bool = False) -> int:
        return self.repo.count(active_only=active_only)

    def exists(self, subdomain: str, exclude_id: int | None = None) -> bool:
        return self.repo.exists(sanitize_key(subdomain), exclude_id)

    def _validate(self, subdomain: str, target: MappingTarget) -> tuple[str | None, MappingTarget | None]:
        """Return (error, normalized target)."""
        if not subdomain:
            return "Subdomain is required and may only contain letters, digits and hyphens", None
        if isinstance(target, ServeResource):
            if not target.resource_id:
                return "A resource id is required", None
            if self.content is None or self.content.resolve_by_id(target.resource_id) is None:
                return f"Resource {target.resource_id} does not exist", None
            return None, target
        if isinstance(target, RedirectUrl):
            url = clean_url(target.url)
            if not url:
                return "Redirect URL must be an absolute http(s) URL", None
            return None, RedirectUrl(url=url)
        if isinstance(target, RedirectHome):
            return None, target
        return "Unknown mapping target", None

    @staticmethod
    def _apply(m: Mapping, subdomain: str, target: MappingTarget, redirect_code: int) -> None:
        m.subdomain = subdomain
        m.kind = target.kind.value
        m.resource_id = target.resource_id if isinstance(target, ServeResource) else None
        m.redirect_url = target.url if isinstance(target, RedirectUrl) else None
        m.redirect_code = coerce_code(redirect_code, 301)

    def _write(self, write, subdomain: str) -> MappingWriteResult:
        try:
            m = write()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Mapping for '{subdomain}' rejected by unique constraint")
            return MappingWriteResult(error=f"Subdomain '{subdomain}' is already mapped")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save mapping for '{subdomain}': {e}")
            return MappingWriteResult(error="Could not save mapping")
        return MappingWriteResult(mapping=MappingRecord.from_row(m))

    def add(self, subdomain: str, target: MappingTarget, redirect_code: int = 301) -> MappingWriteResult:
        subdomain = sanitize_key(subdomain)
        error, target = self._validate(subdomain, target)
        if error:
            logger.warning(f"Rejected mapping '{subdomain}': {error}")
            return MappingWriteResult(error=error)
        if self.repo.exists(subdomain):
            return MappingWriteResult(error=f"Subdomain '{subdomain}' is already mapped")

        m = Mapping(active=True)
        self._apply(m, subdomain, target, redirect_code)
        result = self._write(lambda: self.repo.create(m), subdomain)
        if result.ok:
            logger.info(f"Added mapping '{subdomain}' ({target.kind.value})")
        return result

    def update(self, id: int, subdomain: str, target: MappingTarget, redirect_code: int = 301) -> MappingWriteResult:
        m = self.repo.get(id)
        if not m:
            return MappingWriteResult(error="Mapping not found")
        subdomain = sanitize_key(subdomain)
        error, target = self._validate(subdomain, target)
        if error:
            logger.warning(f"Rejected update of mapping {id}: {error}")
            return MappingWriteResult(error=error)
        if self.repo.exists(subdomain, exclude_id=id):
            return MappingWriteResult(error=f"Subdomain '{subdomain}' is already mapped")

        self._apply(m, subdomain, target, redirect_code)
        return self._write(lambda: self.repo.update(m), subdomain)

    def set_active(self, id: int, active: bool) -> bool:
        m = self.repo.get(id)
        if not m:
            return False
        m.active = bool(active)
        return self._write(lambda: self.repo.update(m), m.subdomain).ok

    def delete(self, id: int) -> bool:
        """Delete a mapping. Deleting an absent id succeeds; only a storage failure returns False."""
        try:
            self.repo.delete(id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete mapping {id}: {e}")
            return False
        return True
