from redirect_counter.persistence.repos import OptionRepo
from redirect_counter.services.options import (
    DEFAULTS, OPTION_NAME, DomainRedirectRule, ensure_default_options, load_options, sanitize_options, save_options,
)


def test_sanitize_accepts_comma_separated_lists():
    clean = sanitize_options({
        "excluded_subdomains": "www, Mail ,, staging",
        "aliased_domains": "https://www.Alias.org/, other.net",
    })
    assert clean["excluded_subdomains"] == ["www", "mail", "staging"]
    assert clean["aliased_domains"] == ["alias.org", "other.net"]


def test_sanitize_falls_back_to_safe_values():
    clean = sanitize_options({
        "log_retention_days": 5,
        "unmapped_behavior": "explode",
        "unmapped_redirect_code": 303,
        "logging_enabled": "on",
        "enabled": False,
    })
    assert clean["log_retention_days"] == 0
    assert clean["unmapped_behavior"] == "show"
    assert clean["unmapped_redirect_code"] == 302
    assert clean["logging_enabled"] is True
    assert clean["enabled"] is False


def test_sanitize_keeps_valid_choices():
    clean = sanitize_options({"log_retention_days": "30", "unmapped_behavior": "Redirect", "unmapped_redirect_code": 307})
    assert clean["log_retention_days"] == 30
    assert clean["unmapped_behavior"] == "redirect"
    assert clean["unmapped_redirect_code"] == 307


def test_sanitize_redirect_domains():
    clean = sanitize_options({"redirect_domains": [
        {"from_domain": "https://www.CardAndCraft.org/", "target_url": "https://cardandcraft.com", "status_code": 999},
        {"domain": "legacy.net", "target_url": "https://new.net/landing", "redirect_code": "302", "keep_query": False},
        {"from_domain": "", "target_url": "https://x.com"},
        {"from_domain": "no-target.org", "target_url": ""},
        {"from_domain": "ftp.org", "target_url": "ftp://files.example.com"},
        "not a rule",
    ]})
    assert clean["redirect_domains"] == [
        {"from_domain": "cardandcraft.org", "target_url": "https://cardandcraft.com", "status_code": 301,
         "keep_path": True, "keep_query": True},
        {"from_domain": "legacy.net", "target_url": "https://new.net/landing", "status_code": 302,
         "keep_path": True, "keep_query": False},
    ]


def test_build_target():
    rule = DomainRedirectRule("a.org", "https://b.com/", keep_path=True, keep_query=True)
    assert rule.build_target("/shop", "x=1") == "https://b.com/shop?x=1"
    assert rule.build_target("/", "") == "https://b.com/"

    rule = DomainRedirectRule("a.org", "https://b.com/?ref=a", keep_path=False, keep_query=True)
    assert rule.build_target("/shop", "x=1") == "https://b.com/?ref=a&x=1"

    rule = DomainRedirectRule("a.org", "https://b.com", keep_path=True, keep_query=False)
    assert rule.build_target("/shop", "x=1") == "https://b.com/shop"


def test_load_without_row_uses_defaults(db):
    OptionRepo(db).set(OPTION_NAME, None)
    opts = load_options(db)
    assert opts.enabled is True
    assert opts.logging_enabled is False
    assert opts.excluded_subdomains == ["www", "mail", "ftp", "cpanel", "webmail"]
    assert opts.unmapped_redirect_code == 302


def test_save_then_load(db):
    save_options(db, {"aliased_domains": ["alias.org"], "redirect_domains": [
        {"from_domain": "old.org", "target_url": "https://new.org"},
    ]})
    opts = load_options(db)
    assert opts.aliased_domains == ["alias.org"]
    assert opts.redirect_domains == [DomainRedirectRule("old.org", "https://new.org")]


def test_defaults_seeded_once(db):
    # init_all already seeded the row
    assert OptionRepo(db).get(OPTION_NAME) == DEFAULTS
    save_options(db, {"logging_enabled": True})
    assert ensure_default_options(db) is False
    assert load_options(db).logging_enabled is True
