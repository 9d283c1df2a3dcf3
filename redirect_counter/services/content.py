"""
Content resolution for the routing pipeline.

The pipeline only talks to the ContentResolver protocol. JsonContentStore is the
bundled implementation: published items are read from a JSON file shaped like

    {
      "homepage": "1",
      "items": [
        {"id": "42", "type": "page", "slug": "tickets", "title": "Tickets",
         "path": "/events/tickets/", "status": "publish", "body": "..."}
      ]
    }
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

PUBLIC_TYPES = ("page", "post")


@dataclass(frozen=True)
class ContentHandle:
    id: str
    slug: str
    type: str = "page"
    title: str = ""
    path: str = ""
    status: str = "publish"
    body: str = ""

    @property
    def published(self) -> bool:
        return self.status == "publish"


class ContentResolver(Protocol):
    def resolve_by_id(self, resource_id: str) -> ContentHandle | None: ...
    def resolve_by_slug(self, slug: str) -> ContentHandle | None: ...
    def permalink(self, handle: ContentHandle) -> str: ...
    def homepage(self) -> ContentHandle | None: ...


class JsonContentStore:
    """ContentResolver backed by a JSON file (reloaded when the file changes) or an in-memory list."""

    def __init__(self, items: Iterable[dict] = (), homepage: str | None = None, path: str | None = None,
                 public_types: tuple[str, ...] = PUBLIC_TYPES):
        self.path = path
        self.public_types = public_types
        self._mtime: float | None = None
        self._load(list(items), homepage)

    @classmethod
    def from_file(cls, path: str) -> "JsonContentStore":
        store = cls(path=path)
        store._reload_if_changed()
        return store

    def _load(self, items: list[dict], homepage: str | None) -> None:
        self._items: list[ContentHandle] = []
        for raw in items:
            if not isinstance(raw, dict) or raw.get("id") in (None, ""):
                continue
            slug = str(raw.get("slug") or "").strip().lower()
            self._items.append(ContentHandle(
                id=str(raw["id"]),
                slug=slug,
                type=str(raw.get("type") or "page"),
                title=str(raw.get("title") or ""),
                path=str(raw.get("path") or ""),
                status=str(raw.get("status") or "publish"),
                body=str(raw.get("body") or ""),
            ))
        self._by_id = {item.id: item for item in self._items}
        self._homepage_id = str(homepage) if homepage not in (None, "") else None

    def _reload_if_changed(self) -> None:
        if not self.path:
            return
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            if self._mtime is not None:
                logger.warning(f"Content file {self.path} disappeared; serving no content")
                self._load([], None)
                self._mtime = None
            return
        if mtime == self._mtime:
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read content file {self.path}: {e}")
            return
        if isinstance(data, list):
            data = {"items": data}
        self._load(data.get("items") or [], data.get("homepage"))
        self._mtime = mtime
        logger.info(f"Loaded {len(self._items)} content items from {self.path}")

    def items(self) -> list[ContentHandle]:
        self._reload_if_changed()
        return list(self._items)

    def resolve_by_id(self, resource_id: str) -> ContentHandle | None:
        """Published item with this id, any type."""
        self._reload_if_changed()
        item = self._by_id.get(str(resource_id))
        return item if item and item.published else None

    def resolve_by_slug(self, slug: str) -> ContentHandle | None:
        """Published page with this slug first, then any other public type."""
        self._reload_if_changed()
        slug = (slug or "").lower()
        candidates = [i for i in self._items if i.slug == slug and i.published and i.type in self.public_types]
        for item in candidates:
            if item.type == "page":
                return item
        return candidates[0] if candidates else None

    def resolve_by_path(self, path: str) -> ContentHandle | None:
        self._reload_if_changed()
        wanted = "/" + (path or "").strip("/")
        for item in self._items:
            if item.published and "/" + self.permalink(item).strip("/") == wanted:
                return item
        return None

    def permalink(self, handle: ContentHandle) -> str:
        if handle.path:
            return handle.path if handle.path.startswith("/") else "/" + handle.path
        return f"/{handle.slug}/" if handle.slug else "/"

    def homepage(self) -> ContentHandle | None:
        self._reload_if_changed()
        if self._homepage_id is None:
            return None
        return self.resolve_by_id(self._homepage_id)
