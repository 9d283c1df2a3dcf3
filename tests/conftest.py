"""Shared test fixtures: per-test SQLite tenants and an in-memory content store."""
import json
import pytest
from redirect_counter.config import Settings
from redirect_counter.persistence.db import TenantRegistry
from redirect_counter.services.content import JsonContentStore
from redirect_counter.services.options import RouterOptions

SITE_URL = "https://example.com"

CONTENT = {
    "homepage": "1",
    "items": [
        {"id": "1", "type": "page", "slug": "home", "title": "Welcome", "path": "/", "body": "Front page"},
        {"id": "42", "type": "page", "slug": "event-tickets", "title": "Tickets", "path": "/events/tickets/",
         "body": "Buy tickets here"},
        {"id": "5", "type": "page", "slug": "news", "title": "News page", "path": "/news/"},
        {"id": "7", "type": "post", "slug": "news", "title": "News post", "path": "/2024/news/"},
        {"id": "8", "type": "post", "slug": "launch", "title": "Launch", "path": "/2024/launch/"},
        {"id": "9", "type": "page", "slug": "secret", "title": "Draft", "path": "/secret/", "status": "draft"},
        {"id": "10", "type": "attachment", "slug": "logo", "title": "Logo", "path": "/logo/"},
    ],
}


def make_config(tmp_path, **overrides) -> Settings:
    values = dict(DATA_DIR=str(tmp_path / "data"), SITE_URL=SITE_URL, ADMIN_TOKEN="secret")
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def registry(config):
    registry = TenantRegistry(config)
    registry.init_all()
    yield registry
    registry.dispose()


@pytest.fixture
def db(registry):
    with registry.session(registry.primary.name) as session:
        yield session


@pytest.fixture
def content():
    return JsonContentStore(items=CONTENT["items"], homepage=CONTENT["homepage"])


@pytest.fixture
def content_file(config):
    path = config.content_path(config.PRIMARY_TENANT)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(CONTENT, f)
    return path


@pytest.fixture
def options():
    return RouterOptions()
