"""
Subdomain routing middleware.
Builds an Interceptor for the request's tenant and applies its decision:
redirects are answered directly, in-place serves rewrite the request path.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from redirect_counter.persistence.db import Tenant, TenantRegistry
from redirect_counter.services.content import ContentResolver
from redirect_counter.services.context import RequestContext
from redirect_counter.services.interceptor import PASS, Interceptor, RoutingAction, RoutingDecision
from redirect_counter.services.options import load_options

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def route_request(registry: TenantRegistry, tenant: Tenant, ctx: RequestContext, content: ContentResolver,
                  listeners: dict[str, list] | None = None) -> RoutingDecision:
    """
    Decide what to do with one request, inside a fresh session for its tenant.
    Storage failures fall back to PASS so the visitor still gets the normal page.
    """
    try:
        with registry.session(tenant.name) as db:
            interceptor = Interceptor(db, load_options(db), content, tenant.site_url, api_prefix=API_PREFIX)
            for event, callbacks in (listeners or {}).items():
                for callback in callbacks:
                    interceptor.on(event, callback)
            return interceptor.decide(ctx)
    except SQLAlchemyError:
        logger.exception(f"Routing skipped for {ctx.host}{ctx.path}, storage unavailable")
        return PASS


def install_routing(app: FastAPI) -> None:
    @app.middleware("http")
    async def subdomain_routing(request: Request, call_next):
        """
        Resolve the tenant from the Host header and run the routing pipeline.
        - REDIRECT: answer with the decision's Location and status code
        - SERVE: rewrite the path to the content's permalink and expose the decision
          to views as request.state.routing, plus a canonical Link header
        - PASS: continue untouched
        """
        state = request.app.state
        registry: TenantRegistry = state.registry
        tenant = registry.tenant_for_host(request.headers.get("host", ""))
        request.state.tenant = tenant.name

        ctx = RequestContext.from_request(request, state.config.TRUST_PROXY_HEADERS)
        decision = await run_in_threadpool(
            route_request, registry, tenant, ctx, state.content[tenant.name], state.routing_listeners
        )

        if decision.action is RoutingAction.REDIRECT:
            return RedirectResponse(url=decision.location, status_code=decision.status_code)

        if decision.action is RoutingAction.SERVE:
            # Browser URL stays the same; only the router sees the content path
            request.scope["path"] = decision.content_path
            request.state.routing = decision
            response = await call_next(request)
            response.headers["Link"] = f'<{decision.canonical_url}>; rel="canonical"'
            return response

        return await call_next(request)
