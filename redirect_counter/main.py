"""
Main FastAPI application factory and middleware configuration.
Wires tenant databases, content stores, the subdomain routing middleware and,
for multi-tenant deployments, the early domain redirect middleware.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from redirect_counter.config import Settings, settings
from redirect_counter.persistence.db import TenantRegistry
from redirect_counter.services.content import JsonContentStore
from redirect_counter.services.interceptor import EVENTS
from redirect_counter.web import api, views
from redirect_counter.web.early import EarlyDomainRedirectMiddleware
from redirect_counter.web.middleware import install_routing

logger = logging.getLogger(__name__)


def create_app(config: Settings | None = None, registry: TenantRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application with middleware and routes."""
    config = config or settings
    registry = registry or TenantRegistry(config)
    registry.init_all()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        registry.dispose()

    app = FastAPI(title=config.APP_NAME, root_path=config.ROOT_PATH or "", lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.content = {
        name: JsonContentStore.from_file(registry.get(name).content_path) for name in registry.names()
    }
    # Callbacks per routing event, e.g. app.state.routing_listeners["domain_redirect"].append(fn)
    app.state.routing_listeners = {event: [] for event in EVENTS}

    install_routing(app)

    # Added last so it wraps everything else
    if config.early_redirects_enabled():
        app.add_middleware(
            EarlyDomainRedirectMiddleware,
            engine=registry.engine(registry.primary.name),
            trust_proxy=config.TRUST_PROXY_HEADERS,
            listeners=app.state.routing_listeners,
        )

    # The page view is a catch-all, so the API goes first
    app.include_router(api.router)
    app.include_router(views.router)

    logger.info(f"{config.APP_NAME} ready with tenants: {', '.join(registry.names())}")
    return app
