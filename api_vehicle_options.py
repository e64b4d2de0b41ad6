# api_vehicle_options.py
# Make -> model -> year cascade for the vehicle picker. Always answers: live
# marketplace data when there is enough of it, the fallback catalog otherwise.
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from services.context import ServiceContext
from services.resolver import DEFAULT_SESSION

options_router = APIRouter()


def _ctx(request: Request) -> ServiceContext:
    return request.app.state.ctx


# Cascade selections are tracked per picker. Callers that name none share one per client address.
def _session(request: Request, session: Optional[str] = Query(default=None)) -> str:
    if session and session.strip():
        return session.strip()
    return request.client.host if request.client else DEFAULT_SESSION


@options_router.get("/vehicle-options/makes")
async def get_makes(force_refresh: bool = Query(default=False), ctx: ServiceContext = Depends(_ctx)):
    resolved = await ctx.resolver.resolve_makes(force_refresh=force_refresh)
    return resolved.to_dict()


@options_router.get("/vehicle-options/models")
async def get_models(
    make: str = Query(...),
    force_refresh: bool = Query(default=False),
    session: str = Depends(_session),
    ctx: ServiceContext = Depends(_ctx),
):
    resolved = await ctx.resolver.resolve_models(make, force_refresh=force_refresh, session=session)
    return resolved.to_dict()


@options_router.get("/vehicle-options/years")
async def get_years(
    make: str = Query(...),
    model: str = Query(...),
    force_refresh: bool = Query(default=False),
    session: str = Depends(_session),
    ctx: ServiceContext = Depends(_ctx),
):
    resolved = await ctx.resolver.resolve_years(make, model, force_refresh=force_refresh, session=session)
    return resolved.to_dict()


@options_router.get("/vehicle-options/aspects")
async def get_aspects(
    make: Optional[str] = Query(default=None),
    model: Optional[str] = Query(default=None),
    session: str = Depends(_session),
    ctx: ServiceContext = Depends(_ctx),
):
    attrs = await ctx.resolver.resolve_attribute_set(make, model, session=session)
    return attrs.to_dict()


# Diagnostics: next request for anything goes upstream again
@options_router.post("/vehicle-options/cache/clear")
async def clear_cache(ctx: ServiceContext = Depends(_ctx)):
    return {"ok": True, "cleared": ctx.clear_caches()}
