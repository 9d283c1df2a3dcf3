import json
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from redirect_counter.main import create_app
from redirect_counter.persistence.db import TenantRegistry
from redirect_counter.services.mappings import MappingService, ServeResource
from redirect_counter.services.options import save_options
from redirect_counter.services.statistics import StatisticsService
from tests.conftest import CONTENT, make_config

ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def app(config, registry, content_file):
    return create_app(config, registry)


def client(app, base_url="https://example.com"):
    return TestClient(app, base_url=base_url, follow_redirects=False)


def test_main_domain_serves_pages(app):
    r = client(app).get("/events/tickets/")
    assert r.status_code == 200
    assert "Buy tickets here" in r.text
    assert '<link rel="canonical" href="https://example.com/events/tickets/">' in r.text
    assert "link" not in r.headers

    assert "Front page" in client(app).get("/").text
    assert client(app).get("/missing/").status_code == 404


def test_subdomain_serves_mapped_content_in_place(app, db):
    save_options(db, {"logging_enabled": True})
    c = client(app)
    created = c.post("/api/admin/mappings", json={"subdomain": "tickets", "kind": "resource", "resource_id": "42"},
                     headers=ADMIN)
    assert created.status_code == 201

    r = client(app, "https://tickets.example.com").get("/")

    assert r.status_code == 200
    assert "Buy tickets here" in r.text
    assert r.headers["link"] == '<https://example.com/events/tickets/>; rel="canonical"'
    assert '<link rel="canonical" href="https://example.com/events/tickets/">' in r.text
    assert StatisticsService(db).get_by_key("tickets").redirect_count == 1

    logs = c.get("/api/admin/logs", params={"type": "subdomain"}, headers=ADMIN).json()
    assert logs["total"] == 1
    assert logs["items"][0]["target_path"] == "/events/tickets/"
    assert logs["items"][0]["source_url"] == "https://tickets.example.com/"


def test_unmapped_subdomain(app, db):
    r = client(app, "https://nothing.example.com").get("/")
    assert r.status_code == 200
    assert "Front page" in r.text
    assert r.headers["link"] == '<https://example.com/>; rel="canonical"'

    save_options(db, {"unmapped_behavior": "redirect"})
    r = client(app, "https://nothing.example.com").get("/")
    assert r.status_code == 302
    assert r.headers["location"] == "https://example.com/"
    assert StatisticsService(db).get_by_key("nothing").redirect_count == 2


def test_domain_redirect(app, db):
    save_options(db, {"redirect_domains": [
        {"from_domain": "cardandcraft.org", "target_url": "https://cardandcraft.com", "status_code": 301,
         "keep_path": True, "keep_query": False},
    ]})
    r = client(app, "https://cardandcraft.org").get("/shop?x=1")
    assert r.status_code == 301
    assert r.headers["location"] == "https://cardandcraft.com/shop"
    assert StatisticsService(db).get_by_key("@cardandcraft.org").redirect_count == 1


def test_admin_requires_token(app):
    c = client(app)
    assert c.get("/api/admin/mappings").status_code == 404
    assert c.get("/api/admin/mappings", headers={"X-Admin-Token": "wrong"}).status_code == 403
    assert c.get("/api/network/stats").status_code == 404


def test_admin_without_configured_token_is_hidden(tmp_path):
    config = make_config(tmp_path, ADMIN_TOKEN="")
    registry = TenantRegistry(config)
    try:
        app = create_app(config, registry)
        assert client(app).get("/api/admin/mappings", headers={"X-Admin-Token": ""}).status_code == 404
    finally:
        registry.dispose()


def test_mapping_crud(app):
    c = client(app)
    r = c.post("/api/admin/mappings", json={"subdomain": "Docs", "kind": "url",
                                            "redirect_url": "https://docs.example.net", "redirect_code": 302},
               headers=ADMIN)
    assert r.status_code == 201
    mapping = r.json()
    assert mapping["subdomain"] == "docs"
    assert mapping["kind"] == "url"
    assert mapping["redirect_code"] == 302

    dup = c.post("/api/admin/mappings", json={"subdomain": "docs", "kind": "home"}, headers=ADMIN)
    assert dup.status_code == 400
    bad = c.post("/api/admin/mappings", json={"subdomain": "x", "kind": "resource", "resource_id": "404"},
                 headers=ADMIN)
    assert bad.status_code == 400

    r = c.put(f"/api/admin/mappings/{mapping['id']}", json={"subdomain": "docs", "kind": "home"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["kind"] == "home"
    assert r.json()["redirect_code"] == 301
    assert c.put("/api/admin/mappings/999", json={"subdomain": "x", "kind": "home"}, headers=ADMIN).status_code == 404

    r = c.post(f"/api/admin/mappings/{mapping['id']}/active", json={"active": False}, headers=ADMIN)
    assert r.json()["active"] is False
    listing = c.get("/api/admin/mappings", params={"active_only": True}, headers=ADMIN).json()
    assert listing == {"items": [], "total": 0}
    assert c.get("/api/admin/mappings", headers=ADMIN).json()["total"] == 1

    # Inactive mapping: the subdomain is unmapped again
    assert client(app, "https://docs.example.com").get("/").status_code == 200

    assert c.get(f"/api/admin/mappings/{mapping['id']}", headers=ADMIN).status_code == 200
    assert c.delete(f"/api/admin/mappings/{mapping['id']}", headers=ADMIN).json() == {"deleted": True}
    assert c.delete(f"/api/admin/mappings/{mapping['id']}", headers=ADMIN).json() == {"deleted": True}
    assert c.get(f"/api/admin/mappings/{mapping['id']}", headers=ADMIN).status_code == 404


def test_settings_are_sanitized(app):
    c = client(app)
    r = c.put("/api/admin/settings", json={
        "aliased_domains": "www.alias.org, other.net",
        "log_retention_days": 3,
        "redirect_domains": [{"domain": "https://Old.org/", "target_url": "https://new.org", "redirect_code": 418}],
    }, headers=ADMIN)
    assert r.status_code == 200
    saved = c.get("/api/admin/settings", headers=ADMIN).json()
    assert saved["aliased_domains"] == ["alias.org", "other.net"]
    assert saved["log_retention_days"] == 0
    assert saved["redirect_domains"] == [{"from_domain": "old.org", "target_url": "https://new.org",
                                          "status_code": 301, "keep_path": True, "keep_query": True}]


def test_statistics_and_logs_endpoints(app, db):
    save_options(db, {"logging_enabled": True, "redirect_domains": [
        {"from_domain": "old.org", "target_url": "https://new.org"},
    ]})
    client(app, "https://old.org").get("/")
    client(app, "https://news.example.com").get("/")
    client(app, "https://news.example.com").get("/")

    c = client(app)
    stats = c.get("/api/admin/statistics", headers=ADMIN).json()
    assert [(s["key"], s["redirect_count"]) for s in stats["items"]] == [("news", 2), ("@old.org", 1)]
    assert stats["items"][1]["domain_redirect"] is True

    summary = c.get("/api/admin/statistics/summary", headers=ADMIN).json()
    assert summary["distinct_key_count"] == 2
    assert summary["total_redirects"] == 3

    domain_logs = c.get("/api/admin/logs", params={"type": "domain"}, headers=ADMIN).json()
    assert [e["key"] for e in domain_logs["items"]] == ["@old.org"]
    entry_id = domain_logs["items"][0]["id"]
    assert c.get(f"/api/admin/logs/{entry_id}", headers=ADMIN).json()["key"] == "@old.org"
    assert c.get("/api/admin/logs/9999", headers=ADMIN).status_code == 404
    assert c.get("/api/admin/logs", params={"type": "bogus"}, headers=ADMIN).status_code == 422

    assert c.post("/api/admin/logs/prune", headers=ADMIN).json() == {"deleted": 0}
    assert c.post("/api/admin/logs/prune", params={"days": 1}, headers=ADMIN).json() == {"deleted": 0}
    assert c.delete("/api/admin/logs", headers=ADMIN).json() == {"cleared": True}
    assert c.get("/api/admin/logs", headers=ADMIN).json()["total"] == 0

    assert c.delete("/api/admin/statistics/@old.org", headers=ADMIN).status_code == 200
    assert c.get("/api/admin/statistics", headers=ADMIN).json()["total"] == 1
    assert c.delete("/api/admin/statistics", headers=ADMIN).json() == {"reset": True}
    assert c.get("/api/admin/statistics/summary", headers=ADMIN).json()["total_redirects"] == 0


def test_api_on_subdomain_host_is_not_rewritten(app):
    r = client(app, "https://news.example.com").get("/api/admin/mappings", headers=ADMIN)
    assert r.status_code == 200


@pytest.fixture
def network(tmp_path):
    config = make_config(tmp_path, TENANTS={"shop": "https://shop.example.net"})
    registry = TenantRegistry(config)
    for name in ("main", "shop"):
        with open(config.content_path(name), "w", encoding="utf-8") as f:
            json.dump(CONTENT, f)
    app = create_app(config, registry)
    yield app, registry
    registry.dispose()


def test_tenants_are_isolated(network):
    app, registry = network
    with registry.session("shop") as db:
        assert MappingService(db, app.state.content["shop"]).add("sale", ServeResource("42")).ok

    r = client(app, "https://sale.shop.example.net").get("/")
    assert r.headers["link"] == '<https://shop.example.net/events/tickets/>; rel="canonical"'
    # Same label on the primary site has no mapping and no matching slug
    r = client(app, "https://sale.example.com").get("/")
    assert r.headers["link"] == '<https://example.com/>; rel="canonical"'

    with registry.session("shop") as db:
        assert StatisticsService(db).get_by_key("sale").target_path == "/events/tickets/"
    with registry.session("main") as db:
        assert StatisticsService(db).get_by_key("sale").target_path == "/ (unmapped)"


def test_primary_domain_rules_apply_to_every_tenant(network):
    app, registry = network
    with registry.session("main") as db:
        save_options(db, {"redirect_domains": [
            {"from_domain": "shop.example.net", "target_url": "https://store.example.org", "status_code": 302},
        ]})

    r = client(app, "https://shop.example.net").get("/cart", params={"id": "3"})
    assert r.status_code == 302
    assert r.headers["location"] == "https://store.example.org/cart?id=3"
    with registry.session("main") as db:
        assert StatisticsService(db).get_by_key("@shop.example.net").redirect_count == 1
    with registry.session("shop") as db:
        assert StatisticsService(db).total_count() == 0


def test_network_stats(network):
    app, registry = network
    client(app, "https://news.example.com").get("/")
    client(app, "https://news.shop.example.net").get("/")
    client(app, "https://news.shop.example.net").get("/")

    data = client(app).get("/api/network/stats", headers=ADMIN).json()
    assert data["total_redirects"] == 3
    assert {site["tenant"]: site["total_redirects"] for site in data["sites"]} == {"main": 1, "shop": 2}


def test_domain_redirect_keeps_encoded_path(app, db):
    save_options(db, {"redirect_domains": [{"from_domain": "old.org", "target_url": "https://new.org"}]})
    r = client(app, "https://old.org").get("/a%3Fb%2Fc")
    assert r.status_code == 301
    assert r.headers["location"] == "https://new.org/a%3Fb%2Fc"


def test_storage_failure_serves_normal_page(app, registry):
    with registry.engine(registry.primary.name).begin() as conn:
        conn.execute(text("DROP TABLE mappings"))

    r = client(app, "https://tickets.example.com").get("/")

    assert r.status_code == 200
    assert "Front page" in r.text
    assert "link" not in r.headers


def test_early_redirects_fire_domain_listeners(network):
    app, registry = network
    seen = []
    app.state.routing_listeners["domain_redirect"].append(lambda *args: seen.append(args))
    with registry.session("main") as db:
        save_options(db, {"redirect_domains": [{"from_domain": "old.org", "target_url": "https://new.org"}]})

    client(app, "https://old.org").get("/x")

    assert seen == [("old.org", "https://new.org/x", "https://old.org/x", 301)]


def test_tenant_engines_are_created_up_front(network):
    app, registry = network
    assert set(registry._engines) == set(registry._factories) == {"main", "shop"}
    assert registry.engine("shop") is registry._engines["shop"]
