"""
Request-time routing decisions for one tenant.

An Interceptor is built per request and turns a RequestContext into a
RoutingDecision, in this order of precedence:

    1. whole-domain redirect rules
    2. subdomain detection (no subdomain: pass through untouched)
    3. subdomain mapped to a URL or to the site root: redirect
    4. subdomain mapped to a resource, or matching a content slug: serve it in place
       otherwise the subdomain is unmapped: serve the homepage, or redirect to the
       site root when unmapped_behavior is "redirect"
    5. record statistics and the event log (at most once)
    6. attach the canonical URL of whatever is served in place

Statistics and log writes are best effort: storage errors are logged and never
change the decision.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from redirect_counter.services.content import ContentHandle, ContentResolver
from redirect_counter.services.context import RequestContext
from redirect_counter.services.eventlog import EventLogger
from redirect_counter.services.hosts import detect_subdomain, normalize_host, url_host, valid_domains
from redirect_counter.services.mappings import MappingService, RedirectUrl, ServeResource
from redirect_counter.services.options import DomainRedirectRule, RouterOptions, coerce_code
from redirect_counter.services.statistics import StatisticsService, domain_key

logger = logging.getLogger(__name__)

HOME_REDIRECT_TARGET = "/ (home redirect)"
UNMAPPED_REDIRECT_TARGET = "/ (unmapped redirect)"
UNMAPPED_TARGET = "/ (unmapped)"

EVENTS = ("domain_redirect", "url_redirect", "unmapped_redirect", "redirect_processed")


def emit_event(listeners: dict[str, list[Callable]], event: str, *args) -> None:
    """Call every listener for event; a failing listener is logged and the rest still run."""
    for callback in listeners.get(event, ()):
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Routing listener {callback!r} failed on '{event}'")


class RoutingAction(str, enum.Enum):
    PASS = "pass"
    REDIRECT = "redirect"
    SERVE = "serve"


@dataclass(frozen=True)
class RoutingDecision:
    action: RoutingAction
    location: str | None = None
    status_code: int | None = None
    content: ContentHandle | None = None
    content_path: str | None = None
    canonical_url: str | None = None
    subdomain: str | None = None
    unmapped: bool = False
    key: str | None = None
    target_path: str | None = None


PASS = RoutingDecision(action=RoutingAction.PASS)


def match_domain_rule(host: str, rules: list[DomainRedirectRule]) -> DomainRedirectRule | None:
    """
    First rule whose from_domain equals host (both compared without "www.").
    Rules pointing back at their own domain are skipped.
    """
    host = normalize_host(host)
    if not host:
        return None
    for rule in rules:
        if normalize_host(rule.from_domain) != host:
            continue
        if url_host(rule.target_url) == host:
            logger.warning(f"Ignoring domain redirect {rule.from_domain} -> {rule.target_url}: target is the same host")
            continue
        return rule
    return None


class Interceptor:
    def __init__(self, db: Session, options: RouterOptions, content: ContentResolver, site_url: str,
                 mappings: MappingService | None = None, api_prefix: str = "/api"):
        self.db = db
        self.options = options
        self.content = content
        self.site_url = site_url.rstrip("/")
        self.mappings = mappings if mappings is not None else MappingService(db, content)
        self.api_prefix = api_prefix.rstrip("/")
        self.listeners: dict[str, list[Callable]] = {event: [] for event in EVENTS}
        self._recorded = False

    @property
    def root_url(self) -> str:
        return self.site_url + "/"

    def on(self, event: str, callback: Callable) -> None:
        if event not in self.listeners:
            raise ValueError(f"Unknown routing event: {event}")
        self.listeners[event].append(callback)

    def _emit(self, event: str, *args) -> None:
        emit_event(self.listeners, event, *args)

    def _is_api(self, path: str) -> bool:
        return bool(self.api_prefix) and (path == self.api_prefix or path.startswith(self.api_prefix + "/"))

    def record(self, key: str, target_path: str, ctx: RequestContext) -> None:
        """Bump the counter and append a log row, once per interceptor."""
        if self._recorded:
            return
        self._recorded = True
        try:
            StatisticsService(self.db).record(key, target_path)
            EventLogger(self.db, self.options).log(key, target_path, ctx)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Failed to record routing event for '{key}'")

    def decide(self, ctx: RequestContext) -> RoutingDecision:
        if not self.options.enabled:
            return PASS

        decision = self._domain_redirect(ctx)
        if decision:
            return decision

        if self._is_api(ctx.path):
            return PASS

        subdomain = detect_subdomain(
            ctx.host,
            valid_domains(self.site_url, self.options.aliased_domains),
            self.options.excluded_subdomains,
        )
        if not subdomain:
            return PASS

        mapping = self.mappings.get_by_subdomain(subdomain)

        if mapping and mapping.redirects:
            return self._mapping_redirect(ctx, subdomain, mapping.target, mapping.redirect_code)

        content = None
        if mapping and isinstance(mapping.target, ServeResource):
            content = self.content.resolve_by_id(mapping.target.resource_id)
            if content is None:
                logger.debug(f"Mapped resource {mapping.target.resource_id} for '{subdomain}' is not published")
        if content is None:
            content = self.content.resolve_by_slug(subdomain)

        if content is not None:
            path = self.content.permalink(content)
            decision = RoutingDecision(
                action=RoutingAction.SERVE,
                content=content,
                content_path=path,
                canonical_url=self.site_url + path,
                subdomain=subdomain,
                key=subdomain,
                target_path=path,
            )
        else:
            if self.options.unmapped_behavior == "redirect":
                return self._unmapped_redirect(ctx, subdomain)
            homepage = self.content.homepage()
            decision = RoutingDecision(
                action=RoutingAction.SERVE,
                content=homepage,
                content_path=self.content.permalink(homepage) if homepage else "/",
                canonical_url=self.root_url,
                subdomain=subdomain,
                unmapped=True,
                key=subdomain,
                target_path=UNMAPPED_TARGET,
            )

        self.record(subdomain, decision.target_path, ctx)
        self._emit("redirect_processed", subdomain, decision.target_path, ctx.source_url)
        logger.debug(f"Serving {decision.content_path} for subdomain '{subdomain}'"
                     f"{' (unmapped)' if decision.unmapped else ''}")
        return decision

    def _domain_redirect(self, ctx: RequestContext) -> RoutingDecision | None:
        rule = match_domain_rule(ctx.host, self.options.redirect_domains)
        if rule is None:
            return None
        location = rule.build_target(ctx.request_path, ctx.query)
        code = coerce_code(rule.status_code, 301)
        key = domain_key(rule.from_domain)
        target_path = "→ " + rule.target_url
        self.record(key, target_path, ctx)
        self._emit("domain_redirect", rule.from_domain, location, ctx.source_url, code)
        logger.debug(f"Domain redirect {ctx.host} -> {location} ({code})")
        return RoutingDecision(action=RoutingAction.REDIRECT, location=location, status_code=code,
                               key=key, target_path=target_path)

    def _mapping_redirect(self, ctx: RequestContext, subdomain: str, target, redirect_code: int) -> RoutingDecision:
        if isinstance(target, RedirectUrl):
            location, target_path = target.url, target.url
        else:
            location, target_path = self.root_url, HOME_REDIRECT_TARGET
        code = coerce_code(redirect_code, 301)
        self.record(subdomain, target_path, ctx)
        self._emit("url_redirect", subdomain, location, ctx.source_url, code)
        logger.debug(f"Subdomain redirect '{subdomain}' -> {location} ({code})")
        return RoutingDecision(action=RoutingAction.REDIRECT, location=location, status_code=code,
                               subdomain=subdomain, key=subdomain, target_path=target_path)

    def _unmapped_redirect(self, ctx: RequestContext, subdomain: str) -> RoutingDecision:
        code = coerce_code(self.options.unmapped_redirect_code, 302)
        self.record(subdomain, UNMAPPED_REDIRECT_TARGET, ctx)
        self._emit("unmapped_redirect", subdomain, self.root_url, ctx.source_url, code)
        logger.debug(f"Unmapped subdomain '{subdomain}' redirected to {self.root_url} ({code})")
        return RoutingDecision(action=RoutingAction.REDIRECT, location=self.root_url, status_code=code,
                               subdomain=subdomain, unmapped=True, key=subdomain,
                               target_path=UNMAPPED_REDIRECT_TARGET)
