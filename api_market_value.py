# api_market_value.py
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from services.context import ServiceContext
from services.market_value import unique_vehicle_keys
from services.models import ValueQuery

value_router = APIRouter()


def _ctx(request: Request) -> ServiceContext:
    return request.app.state.ctx


class ValueRequest(BaseModel):
    make: str
    model: str
    # "1967" is accepted too; the service validates the range
    year: Union[int, str]
    mileage: Optional[int] = None
    trim: Optional[str] = None
    zip_code: Optional[str] = None
    force_refresh: bool = False
    # set by the picker while the user is still typing; rapid calls coalesce per channel
    channel: Optional[str] = None


class TitlesRequest(BaseModel):
    titles: List[str] = Field(default_factory=list)


@value_router.post("/vehicle-value")
async def vehicle_value(req: ValueRequest, ctx: ServiceContext = Depends(_ctx)):
    query = ValueQuery(
        make=req.make,
        model=req.model,
        year=req.year,
        mileage=req.mileage,
        trim=req.trim,
        zip_code=req.zip_code,
    )
    svc = ctx.market_values
    if req.channel:
        lookup = await svc.lookup_debounced(req.channel, query, force_refresh=req.force_refresh)
        if lookup is None:
            return {"superseded": True}
    else:
        lookup = await svc.get_market_value(query, force_refresh=req.force_refresh)
    return lookup.to_dict()


# Market values for every vehicle recognizable in a page of listing titles
@value_router.post("/vehicle-values")
async def vehicle_values(req: TitlesRequest, ctx: ServiceContext = Depends(_ctx)):
    keys = unique_vehicle_keys(req.titles)
    found = await ctx.market_values.get_market_values(keys)
    return {
        "requested": [str(k) for k in keys],
        "values": {k: v.to_dict() for k, v in found.items()},
    }
