"""
Per-tenant routing settings stored as one JSON blob in the options table.
Includes the whole-domain redirect rules, which are kept as an ordered list
inside the blob and only ever changed through sanitize_options().
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from urllib.parse import urlparse
from sqlalchemy.orm import Session
from redirect_counter.persistence.models import VALID_REDIRECT_CODES
from redirect_counter.persistence.repos import OptionRepo
from redirect_counter.services.hosts import DEFAULT_EXCLUDED_SUBDOMAINS

logger = logging.getLogger(__name__)

OPTION_NAME = "router_settings"

VALID_RETENTION_DAYS = (0, 7, 14, 30, 60, 90, 180, 365)
UNMAPPED_BEHAVIORS = ("show", "redirect")


def coerce_code(value, default: int = 301) -> int:
    """Return value as a valid redirect status code, or default."""
    try:
        code = int(value)
    except (TypeError, ValueError):
        return default
    return code if code in VALID_REDIRECT_CODES else default


def clean_domain(value) -> str:
    """Bare lowercase host: no scheme, no trailing slash, no leading "www."."""
    domain = str(value or "").strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = domain.rstrip("/")
    return re.sub(r"^www\.", "", domain)


def clean_url(value) -> str:
    """Absolute http(s) URL, or an empty string when the value is not one."""
    url = str(value or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return url


def _as_list(value) -> list:
    # Admin forms send comma separated strings
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _flag(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class DomainRedirectRule:
    from_domain: str
    target_url: str
    status_code: int = 301
    keep_path: bool = True
    keep_query: bool = True

    def build_target(self, path: str, query: str) -> str:
        """Target URL with the original path and query appended as configured."""
        target = self.target_url
        if self.keep_path and path and path != "/":
            target = target.rstrip("/") + path
        if self.keep_query and query:
            target += ("&" if "?" in target else "?") + query
        return target

    @classmethod
    def from_raw(cls, raw) -> "DomainRedirectRule | None":
        """Parse one stored or submitted rule; None when domain or target is unusable."""
        if not isinstance(raw, dict):
            return None
        domain = clean_domain(raw.get("from_domain", raw.get("domain")))
        target = clean_url(raw.get("target_url"))
        if not domain or not target:
            return None
        return cls(
            from_domain=domain,
            target_url=target,
            status_code=coerce_code(raw.get("status_code", raw.get("redirect_code")), 301),
            keep_path=_flag(raw.get("keep_path"), True),
            keep_query=_flag(raw.get("keep_query"), True),
        )


@dataclass
class RouterOptions:
    enabled: bool = True
    logging_enabled: bool = False
    excluded_subdomains: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_SUBDOMAINS))
    aliased_domains: list[str] = field(default_factory=list)
    unmapped_behavior: str = "show"
    unmapped_redirect_code: int = 302
    log_retention_days: int = 0
    redirect_domains: list[DomainRedirectRule] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULTS = RouterOptions().to_dict()


def sanitize_options(raw: dict | None) -> dict:
    """
    Normalize admin input into a storable settings blob.

    Unknown keys are dropped and every field falls back to a safe value:
    - excluded_subdomains / aliased_domains accept lists or comma separated strings
    - log_retention_days must be one of VALID_RETENTION_DAYS (else 0)
    - unmapped_behavior must be "show" or "redirect" (else "show")
    - unmapped_redirect_code falls back to 302, rule status codes to 301
    - redirect_domains entries without a usable domain or target URL are dropped
    """
    raw = raw or {}

    excluded = []
    for label in _as_list(raw.get("excluded_subdomains", DEFAULT_EXCLUDED_SUBDOMAINS)):
        label = re.sub(r"[^a-z0-9_-]", "", str(label).lower())
        if label and label not in excluded:
            excluded.append(label)

    aliased = []
    for domain in _as_list(raw.get("aliased_domains")):
        domain = clean_domain(domain)
        if domain and domain not in aliased:
            aliased.append(domain)

    try:
        retention = int(raw.get("log_retention_days") or 0)
    except (TypeError, ValueError):
        retention = 0
    if retention not in VALID_RETENTION_DAYS:
        retention = 0

    behavior = str(raw.get("unmapped_behavior") or "show").strip().lower()
    if behavior not in UNMAPPED_BEHAVIORS:
        behavior = "show"

    rules = []
    for entry in raw.get("redirect_domains") or []:
        rule = DomainRedirectRule.from_raw(entry)
        if rule is None:
            logger.debug(f"Dropping unusable domain redirect rule: {entry!r}")
            continue
        rules.append(rule)

    return RouterOptions(
        enabled=_flag(raw.get("enabled"), True),
        logging_enabled=_flag(raw.get("logging_enabled"), False),
        excluded_subdomains=excluded,
        aliased_domains=aliased,
        unmapped_behavior=behavior,
        unmapped_redirect_code=coerce_code(raw.get("unmapped_redirect_code"), 302),
        log_retention_days=retention,
        redirect_domains=rules,
    ).to_dict()


def options_from_blob(blob: dict | None) -> RouterOptions:
    """Build RouterOptions from a stored blob, re-sanitizing so hand-edited rows stay safe."""
    data = sanitize_options(blob if isinstance(blob, dict) else DEFAULTS)
    data["redirect_domains"] = [DomainRedirectRule(**rule) for rule in data["redirect_domains"]]
    return RouterOptions(**data)


def load_options(db: Session) -> RouterOptions:
    return options_from_blob(OptionRepo(db).get(OPTION_NAME))


def save_options(db: Session, raw: dict) -> RouterOptions:
    clean = sanitize_options(raw)
    OptionRepo(db).set(OPTION_NAME, clean)
    logger.info(f"Router settings saved ({len(clean['redirect_domains'])} domain redirects)")
    return options_from_blob(clean)


def ensure_default_options(db: Session) -> bool:
    """Seed the default settings blob if the tenant has none. Returns True when seeded."""
    repo = OptionRepo(db)
    if repo.get(OPTION_NAME) is not None:
        return False
    repo.set(OPTION_NAME, dict(DEFAULTS))
    return True
