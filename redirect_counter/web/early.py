"""
Whole-domain redirects handled before tenant resolution.

Runs as the outermost ASGI middleware in multi-tenant deployments: domain
redirect rules are configured once, in the primary tenant's settings, and must
fire before any per-tenant session, content store or router is involved. Only a
raw SQLAlchemy Core connection to the primary database is used.
"""
import logging
from sqlalchemy import Engine, insert, select
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from redirect_counter.persistence.counter import increment_or_insert
from redirect_counter.persistence.models import LogEntry, Option, utcnow
from redirect_counter.services.context import RequestContext
from redirect_counter.services.eventlog import MAX_HEADER_LENGTH, anonymize_ip
from redirect_counter.services.interceptor import emit_event, match_domain_rule
from redirect_counter.services.options import OPTION_NAME, coerce_code, options_from_blob
from redirect_counter.services.statistics import domain_key

logger = logging.getLogger(__name__)

options_table = Option.__table__
logs_table = LogEntry.__table__


class EarlyDomainRedirectMiddleware:
    def __init__(self, app: ASGIApp, engine: Engine, trust_proxy: bool = False,
                 listeners: dict[str, list] | None = None):
        self.app = app
        self.engine = engine
        self.trust_proxy = trust_proxy
        # Same mapping as app.state.routing_listeners; only "domain_redirect" fires here
        self.listeners = listeners if listeners is not None else {}

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = RequestContext.from_scope(scope, self.trust_proxy)
        redirect = await run_in_threadpool(self.handle, ctx)
        if redirect is None:
            await self.app(scope, receive, send)
            return

        location, status_code = redirect
        response = RedirectResponse(location, status_code=status_code)
        await response(scope, receive, send)

    def handle(self, ctx: RequestContext) -> tuple[str, int] | None:
        """Return (location, status_code) when a domain rule matches, else None."""
        try:
            with self.engine.connect() as conn:
                blob = conn.execute(
                    select(options_table.c.value).where(options_table.c.name == OPTION_NAME)
                ).scalar()
        except SQLAlchemyError as e:
            logger.error(f"Early domain redirect check skipped, settings unavailable: {e}")
            return None
        if not blob:
            return None

        options = options_from_blob(blob)
        if not options.enabled:
            return None
        rule = match_domain_rule(ctx.host, options.redirect_domains)
        if rule is None:
            return None

        location = rule.build_target(ctx.request_path, ctx.query)
        code = coerce_code(rule.status_code, 301)
        key = domain_key(rule.from_domain)
        target_path = "→ " + rule.target_url
        try:
            with self.engine.begin() as conn:
                increment_or_insert(conn, key, target_path)
                if options.logging_enabled:
                    conn.execute(insert(logs_table).values(
                        key=key,
                        target_path=target_path[:255],
                        source_url=ctx.source_url,
                        user_agent=ctx.user_agent[:MAX_HEADER_LENGTH],
                        ip_address=anonymize_ip(ctx.client_ip),
                        referer=ctx.referer[:MAX_HEADER_LENGTH],
                        created_at=utcnow(),
                    ))
        except SQLAlchemyError:
            logger.exception(f"Failed to record early domain redirect for '{key}'")

        emit_event(self.listeners, "domain_redirect", rule.from_domain, location, ctx.source_url, code)
        logger.debug(f"Early domain redirect {ctx.host} -> {location} ({code})")
        return location, code
