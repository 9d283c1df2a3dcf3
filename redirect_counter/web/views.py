"""
Public page rendering for published content.
Subdomain requests arrive here with their path already rewritten by the
routing middleware; the canonical URL then points at the main domain.
"""
from pathlib import Path
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

# Template directory for Jinja2 templates
ROOT = (Path(__file__).resolve().parent / "templates").resolve()

templates = Jinja2Templates(directory=ROOT)
router = APIRouter()


@router.get("/{path:path}", response_class=HTMLResponse)
def page(request: Request, path: str = ""):
    state = request.app.state
    tenant = state.registry.get(request.state.tenant)
    store = state.content[tenant.name]
    routing = getattr(request.state, "routing", None)

    if routing is not None:
        item = routing.content
        canonical = routing.canonical_url
    else:
        item = store.resolve_by_path(path) if path.strip("/") else store.homepage()
        canonical = tenant.site_url.rstrip("/") + store.permalink(item) if item else None

    # An empty site still answers on its root
    if item is None and path.strip("/"):
        raise HTTPException(status_code=404, detail="Page not found")

    return templates.TemplateResponse(request, "page.jinja2", {
        "site_name": state.config.APP_NAME,
        "item": item,
        "canonical_url": canonical,
    })
