"""Problem routes: column loading, problem report/resolve, sensors, picking, audit log."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from columnsync.services import problem_flows as flows
from columnsync.services.context import SyncContext
from columnsync.services.errors import InvalidInputError, parse_sensor_id

router = APIRouter(prefix="/api/v1", tags=["Problems"])
logger = logging.getLogger("columnsync.api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class LoadColumnsRequest(BaseModel):
    buildings: List[str] = Field(default_factory=list)
    bays: List[str] = Field(default_factory=list)
    pairs: List[str] = Field(default_factory=list)     # "building::bay"


class VisibilityRequest(BaseModel):
    visible: bool


class ProblemRequest(BaseModel):
    building: str
    column: str
    bay: Optional[str] = None


class MappedProblemRequest(BaseModel):
    building: str
    column: str
    bay: str


class SensorRequest(BaseModel):
    sensor_id: str
    bay: Optional[str] = None


class SensorSearchRequest(BaseModel):
    sensor_id: str


class CheckLogRequest(BaseModel):
    sensor_id: str
    cause: str


# ─── Helpers ────────────────────────────────────────────────────────────────

def get_ctx(request: Request) -> SyncContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Sync context not initialised")
    return ctx


def _bad_input(e: InvalidInputError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(e))


# ─── Columns ────────────────────────────────────────────────────────────────

@router.post("/columns/load")
async def load_columns(body: LoadColumnsRequest, ctx: SyncContext = Depends(get_ctx)):
    return await flows.load_columns(ctx, body.buildings, body.bays, body.pairs)


@router.post("/columns/visibility")
async def set_columns_visibility(body: VisibilityRequest, ctx: SyncContext = Depends(get_ctx)):
    return flows.set_columns_visible(ctx, body.visible)


# ─── Problems ───────────────────────────────────────────────────────────────

@router.post("/problems/report")
async def report_problem(body: ProblemRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.report_problem(ctx, body.building, body.column, body.bay)
    except InvalidInputError as e:
        raise _bad_input(e)


@router.post("/problems/report-mapped")
async def report_mapped(body: MappedProblemRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.report_mapped(ctx, body.building, body.column, body.bay)
    except InvalidInputError as e:
        raise _bad_input(e)


@router.post("/problems/resolve")
async def resolve_problem(body: ProblemRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.resolve_problem(ctx, body.building, body.column, body.bay)
    except InvalidInputError as e:
        raise _bad_input(e)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/problems/open")
async def list_open_problems(ctx: SyncContext = Depends(get_ctx)):
    return flows.open_problems(ctx)


# ─── Sensors ────────────────────────────────────────────────────────────────

@router.post("/sensors/report")
async def report_sensor(body: SensorRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.report_sensor(ctx, body.sensor_id, body.bay)
    except InvalidInputError as e:
        raise _bad_input(e)


@router.post("/sensors/resolve")
async def resolve_sensor(body: SensorRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.resolve_sensor(ctx, body.sensor_id, body.bay)
    except InvalidInputError as e:
        raise _bad_input(e)


@router.post("/sensors/toggle")
async def toggle_sensors(ctx: SyncContext = Depends(get_ctx)):
    return await flows.toggle_sensors(ctx)


@router.post("/sensors/search")
async def search_sensor(body: SensorSearchRequest, ctx: SyncContext = Depends(get_ctx)):
    try:
        return await flows.search_sensor(ctx, body.sensor_id)
    except InvalidInputError as e:
        raise _bad_input(e)


# ─── Scene / panels / audit ─────────────────────────────────────────────────

@router.get("/scene/pick")
async def pick(
    lon: float = Query(...),
    lat: float = Query(...),
    limit: int = Query(16, ge=1, le=64),
    ctx: SyncContext = Depends(get_ctx),
):
    return flows.pick(ctx, lon, lat, limit)


@router.get("/panels")
async def list_panels(ctx: SyncContext = Depends(get_ctx)):
    return [p.as_dict() for p in ctx.annotations.panels.values()]


@router.post("/check-log")
async def submit_check_log(body: CheckLogRequest, ctx: SyncContext = Depends(get_ctx)):
    """Sign off a reported sensor with a free-text cause (append-only audit write)."""
    try:
        sid = parse_sensor_id(body.sensor_id)
        entry = await ctx.annotations.submit_cause(sid, body.cause)
    except InvalidInputError as e:
        raise _bad_input(e)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if entry is None:
        raise HTTPException(status_code=502, detail="Saving the check log failed")
    return {"saved": True, "entry": entry.model_dump()}


@router.get("/notices")
async def drain_notices(ctx: SyncContext = Depends(get_ctx)):
    return {"notices": ctx.notifier.drain()}
