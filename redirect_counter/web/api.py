"""
JSON admin API.
Mapping CRUD, routing settings, statistics and logs for one tenant, plus a
network-wide statistics view. Every endpoint requires the X-Admin-Token header.
"""
import secrets
from typing import Iterator
from fastapi import APIRouter, Depends, HTTPException, Header, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from redirect_counter.persistence.db import Tenant
from redirect_counter.services.eventlog import EventLogger, LogFilter, log_to_dict
from redirect_counter.services.mappings import MappingService, target_from_fields
from redirect_counter.services.options import load_options, save_options
from redirect_counter.services.statistics import StatisticsService, network_summary, statistic_to_dict


def require_admin(request: Request, x_admin_token: str | None = Header(None)) -> None:
    """Unauthenticated callers get a 404 so the API does not advertise itself."""
    expected = request.app.state.config.ADMIN_TOKEN
    if not x_admin_token or not expected:
        raise HTTPException(status_code=404)
    if not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Forbidden")


router = APIRouter(prefix="/api", dependencies=[Depends(require_admin)])


def get_tenant(request: Request, tenant: str | None = Query(None)) -> Tenant:
    """Tenant named by ?tenant=, defaulting to the one serving the request host."""
    registry = request.app.state.registry
    if tenant is None:
        return registry.tenant_for_host(request.headers.get("host", ""))
    found = registry.get(tenant)
    if not found:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return found


def get_db(request: Request, tenant: Tenant = Depends(get_tenant)) -> Iterator[Session]:
    with request.app.state.registry.session(tenant.name) as db:
        yield db


def get_mappings(request: Request, tenant: Tenant = Depends(get_tenant),
                 db: Session = Depends(get_db)) -> MappingService:
    return MappingService(db, request.app.state.content[tenant.name])


class MappingIn(BaseModel):
    subdomain: str
    kind: str = "resource"
    resource_id: str | None = None
    redirect_url: str | None = None
    redirect_code: int = 301


class ActiveIn(BaseModel):
    active: bool


# ---- Mappings ----

@router.get("/admin/mappings")
def list_mappings(active_only: bool = False, order_by: str = "subdomain", order: str = "ASC",
                  limit: int = Query(50, ge=0, le=500), offset: int = Query(0, ge=0),
                  mappings: MappingService = Depends(get_mappings)):
    items = mappings.list(active_only=active_only, order_by=order_by, order=order, limit=limit, offset=offset)
    return {"items": [m.to_dict() for m in items], "total": mappings.total_count(active_only=active_only)}


@router.get("/admin/mappings/{mapping_id}")
def get_mapping(mapping_id: int, mappings: MappingService = Depends(get_mappings)):
    m = mappings.get_by_id(mapping_id)
    if not m:
        raise HTTPException(status_code=404, detail="Mapping not found")
    return m.to_dict()


@router.post("/admin/mappings", status_code=201)
def create_mapping(body: MappingIn, mappings: MappingService = Depends(get_mappings)):
    result = mappings.add(
        body.subdomain,
        target_from_fields(body.kind, body.resource_id, body.redirect_url),
        body.redirect_code,
    )
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return result.mapping.to_dict()


@router.put("/admin/mappings/{mapping_id}")
def update_mapping(mapping_id: int, body: MappingIn, mappings: MappingService = Depends(get_mappings)):
    if not mappings.get_by_id(mapping_id):
        raise HTTPException(status_code=404, detail="Mapping not found")
    result = mappings.update(
        mapping_id,
        body.subdomain,
        target_from_fields(body.kind, body.resource_id, body.redirect_url),
        body.redirect_code,
    )
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return result.mapping.to_dict()


@router.post("/admin/mappings/{mapping_id}/active")
def toggle_mapping(mapping_id: int, body: ActiveIn, mappings: MappingService = Depends(get_mappings)):
    if not mappings.set_active(mapping_id, body.active):
        raise HTTPException(status_code=404, detail="Mapping not found")
    return mappings.get_by_id(mapping_id).to_dict()


@router.delete("/admin/mappings/{mapping_id}")
def delete_mapping(mapping_id: int, mappings: MappingService = Depends(get_mappings)):
    if not mappings.delete(mapping_id):
        raise HTTPException(status_code=500, detail="Could not delete mapping")
    return {"deleted": True}


# ---- Settings ----

@router.get("/admin/settings")
def get_settings(db: Session = Depends(get_db)):
    return load_options(db).to_dict()


@router.put("/admin/settings")
def put_settings(body: dict, db: Session = Depends(get_db)):
    return save_options(db, body).to_dict()


# ---- Statistics ----

@router.get("/admin/statistics")
def list_statistics(order_by: str = "count", order: str = "DESC",
                    limit: int = Query(50, ge=0, le=500), offset: int = Query(0, ge=0),
                    db: Session = Depends(get_db)):
    stats = StatisticsService(db)
    items = stats.list(order_by=order_by, order=order, limit=limit, offset=offset)
    return {"items": [statistic_to_dict(s) for s in items], "total": stats.total_count()}


@router.get("/admin/statistics/summary")
def statistics_summary(n: int = Query(5, ge=1, le=100), db: Session = Depends(get_db)):
    stats = StatisticsService(db)
    return {
        **stats.summary(),
        "top": [statistic_to_dict(s) for s in stats.top(n)],
        "recent": [statistic_to_dict(s) for s in stats.recent(n)],
    }


@router.delete("/admin/statistics")
def reset_statistics(db: Session = Depends(get_db)):
    StatisticsService(db).reset_all()
    return {"reset": True}


@router.delete("/admin/statistics/{key}")
def reset_statistic(key: str, db: Session = Depends(get_db)):
    StatisticsService(db).reset_one(key)
    return {"reset": True, "key": key}


# ---- Logs ----

@router.get("/admin/logs")
def list_logs(type: str | None = Query(None, pattern="^(all|domain|subdomain)$"),
              order_by: str = "created_at", order: str = "DESC",
              limit: int = Query(50, ge=0, le=500), offset: int = Query(0, ge=0),
              db: Session = Depends(get_db)):
    events = EventLogger(db)
    filters = LogFilter.by_type(type)
    items = events.list(order_by=order_by, order=order, limit=limit, offset=offset, **filters)
    return {"items": [log_to_dict(e) for e in items], "total": events.total_count(**filters)}


@router.get("/admin/logs/{log_id}")
def get_log(log_id: int, db: Session = Depends(get_db)):
    entry = EventLogger(db).get_by_id(log_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Log entry not found")
    return log_to_dict(entry)


@router.delete("/admin/logs")
def clear_logs(db: Session = Depends(get_db)):
    EventLogger(db).clear_all()
    return {"cleared": True}


@router.post("/admin/logs/prune")
def prune_logs(days: int | None = Query(None, ge=1), db: Session = Depends(get_db)):
    """Delete entries older than ?days=, or apply the configured retention when omitted."""
    events = EventLogger(db, load_options(db))
    deleted = events.delete_older_than(days) if days else events.run_retention()
    return {"deleted": deleted}


# ---- Network ----

@router.get("/network/stats")
def network_stats(request: Request, n: int = Query(5, ge=1, le=100)):
    return network_summary(request.app.state.registry, top_n=n)
