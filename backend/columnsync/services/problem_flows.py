"""
problem_flows.py: the operator-triggered flows.

Each flow runs its steps strictly in order because every step reads the
scene state the previous one produced (e.g. the crane is placed at the halo
the sensor step just drew). Nothing is rolled back: if a later step fails
the earlier mutations stay visible.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from columnsync.config import MSG_SENSOR_MAPPING, MSG_SENSOR_NOT_FOUND
from columnsync.models.entities import HighlightTag, tag_to_dict
from columnsync.services.context import SyncContext
from columnsync.services.errors import (
    InvalidInputError,
    normalize_bay,
    normalize_id,
    parse_column_id,
    parse_sensor_id,
)
from columnsync.services.perf_monitor import tracked_flow
from columnsync.services.problem_store import ProblemStatus

logger = logging.getLogger("columnsync.flows")


def _not_found(ctx: SyncContext, message: str, **extra) -> Dict[str, Any]:
    ctx.notifier.notice(message)
    logger.info(message, extra=extra)
    return {"found": False, "message": message}


@tracked_flow("load_columns")
async def load_columns(ctx: SyncContext, buildings: Iterable[str] = (), bays: Iterable[str] = (),
                       pairs: Iterable[str] = ()) -> Dict[str, Any]:
    faces = await ctx.columns.load(
        buildings=[normalize_id(b) for b in buildings],
        bays=[normalize_bay(b) for b in bays],
        pairs=list(pairs),
    )
    return {"faces": faces, "columns": len(ctx.columns)}


@tracked_flow("report_sensor")
async def report_sensor(ctx: SyncContext, sensor_id, bay: Optional[str] = None) -> Dict[str, Any]:
    sid = parse_sensor_id(sensor_id)
    bay = normalize_bay(bay or "")

    loc = await ctx.sensors.lookup_by_sensor(sid)
    if loc is None:
        return _not_found(ctx, MSG_SENSOR_MAPPING, sensor_id=sid)
    building, column = loc.building, loc.column
    extra = {"building": building, "column": column, "bay": bay, "sensor_id": sid}

    await ctx.columns.load(buildings=[building])
    highlights = await ctx.highlights.highlight_single(building, column)
    await ctx.sensors.show_for_current_columns()

    ctx.store.open(building, column)
    ctx.columns.set_show(building, column, False)

    halo = ctx.sensors.add_halo(sid)
    ctx.sensors.blink_halo(sid)

    panel = None
    if halo is not None:
        panel = ctx.annotations.show_for_highlight(halo.geometry.lonlat, building, bay, sid)
        await ctx.annotations.enrich(sid)

    await ctx.rails.load(buildings=[building])
    await ctx.rails.get_lines(building, bay)
    crane = None
    if halo is not None:
        lon, lat, _ = halo.geometry.lonlat
        crane = ctx.rails.place_crane_on(building, bay, (lon, lat))

    logger.info("sensor reported", extra=extra)
    return {
        "found": True,
        "building": building,
        "column": column,
        "bay": bay,
        "sensor_id": sid,
        "highlights": len(highlights),
        "sensors": len(ctx.sensors.sensor_ids),
        "halo": halo is not None,
        "crane": crane is not None,
        "panel": panel.as_dict() if panel else None,
    }


@tracked_flow("resolve_sensor")
async def resolve_sensor(ctx: SyncContext, sensor_id, bay: Optional[str] = None) -> Dict[str, Any]:
    sid = parse_sensor_id(sensor_id)
    bay = normalize_bay(bay or "")

    loc = await ctx.sensors.lookup_by_sensor(sid)
    if loc is None:
        return _not_found(ctx, MSG_SENSOR_MAPPING, sensor_id=sid)
    building, column = loc.building, loc.column

    resolved = ctx.highlights.resolve(building, column)
    ctx.sensors.remove_halo(sid)
    await ctx.sensors.show_for_current_columns()
    if bay:
        ctx.rails.remove_crane(building, bay)
    ctx.annotations.clear_for(sid)

    building_open = building in ctx.store.open_buildings()
    if not building_open:
        ctx.rails.remove_by_building(building)

    logger.info("sensor resolved", extra={"building": building, "column": column,
                                          "bay": bay, "sensor_id": sid})
    return {
        "found": True,
        "building": building,
        "column": column,
        "bay": bay,
        "sensor_id": sid,
        "resolved": resolved,
        "status": _status(ctx, building, column),
        "building_open": building_open,
    }


@tracked_flow("report_problem")
async def report_problem(ctx: SyncContext, building, column, bay: Optional[str] = None) -> Dict[str, Any]:
    """Single-column report: load the building, open the problem, highlight the face."""
    cid = str(parse_column_id(column))
    building = normalize_id(building)
    bay = normalize_bay(bay or "") or None

    await ctx.columns.load(buildings=[building])
    made = await ctx.highlights.highlight_single(building, cid, bay)
    return {
        "building": building,
        "column": cid,
        "bay": bay,
        "highlights": len(made),
        "status": _status(ctx, building, cid),
    }


@tracked_flow("report_mapped")
async def report_mapped(ctx: SyncContext, building, column, bay) -> Dict[str, Any]:
    cid = str(parse_column_id(column))
    building = normalize_id(building)
    bay = normalize_bay(bay or "")
    if not bay:
        raise InvalidInputError("Bay is required for a joint report.")

    await ctx.columns.load(buildings=[building])
    made = await ctx.highlights.highlight_mapped_both(building, cid, bay)
    return {
        "building": building,
        "column": cid,
        "bay": bay,
        "highlights": len(made),
        "status": _status(ctx, building, cid),
    }


@tracked_flow("resolve_problem")
async def resolve_problem(ctx: SyncContext, building, column, bay: Optional[str] = None) -> Dict[str, Any]:
    """Resolve a reported column; ``LookupError`` when nothing was ever reported for it."""
    cid = str(parse_column_id(column))
    building = normalize_id(building)
    if ctx.store.get(building, cid) is None:
        raise LookupError(f"no problem recorded for {building}/{cid}")

    bay = normalize_bay(bay or "") or None
    before = len(ctx.store.get(building, cid).entities)
    ok = ctx.highlights.resolve(building, cid, bay)
    rec = ctx.store.get(building, cid)
    # a bay that owns none of the record's highlights removes nothing
    resolved = ok and (rec.status is ProblemStatus.RESOLVED or len(rec.entities) < before)
    if ok and not resolved:
        logger.info("no highlight on that bay, problem left open",
                    extra={"building": building, "column": cid, "bay": bay})
    return {
        "building": building,
        "column": cid,
        "bay": bay,
        "resolved": resolved,
        "status": _status(ctx, building, cid),
        "remaining_highlights": len(rec.entities),
    }


@tracked_flow("toggle_sensors")
async def toggle_sensors(ctx: SyncContext) -> Dict[str, Any]:
    if ctx.sensors.visible:
        ctx.sensors.remove_all()
        return {"visible": False, "count": 0}
    count = await ctx.sensors.show_for_current_columns()
    return {"visible": ctx.sensors.visible, "count": count}


@tracked_flow("search_sensor")
async def search_sensor(ctx: SyncContext, sensor_id) -> Dict[str, Any]:
    sid = parse_sensor_id(sensor_id)

    detail = await ctx.sensor_api.get_sensor_detail(sid)
    if detail is None:
        return _not_found(ctx, MSG_SENSOR_NOT_FOUND, sensor_id=sid)
    building = await ctx.features.get_building_by_column(detail.column_id)
    if not building:
        return _not_found(ctx, MSG_SENSOR_MAPPING, sensor_id=sid)
    column = normalize_id(detail.column_id)

    await ctx.columns.load(buildings=[building])
    count = await ctx.sensors.show_for_current_columns()
    ctx.sensors.colorize_searched(sid, column)
    return {
        "found": True,
        "sensor_id": sid,
        "building": building,
        "column": column,
        "edge_index": detail.edge_index,
        "sensors": count,
    }


def set_columns_visible(ctx: SyncContext, on: bool) -> Dict[str, Any]:
    ctx.columns.apply_visibility(on)
    return {"visible": ctx.columns.visible}


def pick(ctx: SyncContext, lon: float, lat: float, limit: int = 16) -> Dict[str, Any]:
    hits = ctx.scene.drill_pick(lon, lat, limit=limit)
    return {
        "hit": tag_to_dict(hits[0].tag) if hits else None,
        "hits": [{"id": e.id, **tag_to_dict(e.tag)} for e in hits],
    }


def open_problems(ctx: SyncContext) -> Dict[str, Any]:
    metas = ctx.store.list_open()
    counts = {}
    for ent in ctx.scene.of_type(HighlightTag):
        k = (ent.tag.building, ent.tag.column)
        counts[k] = counts.get(k, 0) + 1
    return {
        "open": [
            {**m.as_dict(), "highlights": counts.get((m.building, m.column), 0)} for m in metas
        ],
        "buildings": sorted(ctx.store.open_buildings()),
    }


def _status(ctx: SyncContext, building, column) -> Optional[str]:
    status = ctx.store.status(building, column)
    return status.value if status else None
