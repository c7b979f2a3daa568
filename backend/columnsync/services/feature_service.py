"""
Feature Service (WFS) and sensor REST clients.

Both share one ``httpx.AsyncClient``. Low-level calls raise
``FeatureServiceError``; the public helpers used by the engines catch it,
report through ``handle_error`` and degrade to empty results so rendering
logic never sees an exception from the network.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from columnsync.config import (
    API_PATHS,
    COLUMN_TYPENAME,
    FEATURE_SERVICE_URL,
    FEATURE_SRS,
    FEATURE_WORKSPACE,
    MSG_SENSOR_FETCH,
    RAIL_TYPENAME,
    SENSOR_API_URL,
    WFS_VERSION,
)
from columnsync.models.schemas import CheckLogEntry, SensorRecord, WorkerInfo
from columnsync.services.errors import (
    FeatureServiceError,
    Notifier,
    handle_error,
    normalize_id,
    parse_column_id,
)

logger = logging.getLogger("columnsync.fetch")


# ---------------------------------------------------------------------------
# CQL predicate builders
# ---------------------------------------------------------------------------

def _q(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _split_pair(pair: str):
    building, _, bay = str(pair).partition("::")
    return (building, bay) if building and bay else None


def column_filter(
    buildings: Iterable[str] = (),
    bays: Iterable[str] = (),
    pairs: Iterable[str] = (),
) -> str:
    """CQL for structural faces. ``pairs`` ("bldg::bay") take precedence over buildings/bays."""
    pairs = list(pairs)
    if pairs:
        parts = []
        for building, bay in filter(None, map(_split_pair, pairs)):
            parts.append(
                f"((bldg_id={_q(building)}) AND (pre_bay={_q(bay)} OR next_bay={_q(bay)}))"
            )
        return "(" + " OR ".join(parts) + ")" if parts else ""

    filters = []
    buildings = list(buildings)
    bays = list(bays)
    if buildings:
        filters.append("(" + " OR ".join(f"bldg_id={_q(b)}" for b in buildings) + ")")
    if bays:
        bay_terms = [t for b in bays for t in (f"pre_bay={_q(b)}", f"next_bay={_q(b)}")]
        filters.append("(" + " OR ".join(bay_terms) + ")")
    return " AND ".join(filters)


def rail_filter(buildings: Iterable[str] = (), pairs: Iterable[str] = ()) -> str:
    pairs = list(pairs)
    if pairs:
        items = [
            f"(bldg_id={_q(building)} AND bay={_q(bay)})"
            for building, bay in filter(None, map(_split_pair, pairs))
        ]
        return "(" + " OR ".join(items) + ")" if items else ""
    unique = list(dict.fromkeys(str(b) for b in buildings))
    if not unique:
        return ""
    return "(" + " OR ".join(f"bldg_id={_q(b)}" for b in unique) + ")"


# ---------------------------------------------------------------------------
# Shared JSON transport
# ---------------------------------------------------------------------------

class _JsonClient:
    def __init__(self, client: httpx.AsyncClient, notifier: Optional[Notifier] = None):
        self.client = client
        self.notifier = notifier

    async def _request_json(self, method: str, url: str, allow_404: bool = False,
                            expect_json: bool = True, **kwargs) -> Any:
        try:
            res = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise FeatureServiceError(f"{method} {url} failed: {e}", url=url) from e

        if allow_404 and res.status_code == 404:
            return None
        if res.status_code >= 400:
            raise FeatureServiceError(
                f"Fetch failed: {res.status_code}", status_code=res.status_code, url=url
            )
        if res.status_code == 204 or not expect_json:
            return None

        ctype = res.headers.get("content-type", "").lower()
        if "json" not in ctype:
            logger.error(f"non-JSON response from {url}: {ctype} {res.text[:500]!r}")
            raise FeatureServiceError(f"non-JSON response ({ctype or 'no content-type'})", url=url)
        try:
            return res.json()
        except ValueError as e:
            raise FeatureServiceError(f"malformed JSON from {url}", url=url) from e


# ---------------------------------------------------------------------------
# WFS feature service
# ---------------------------------------------------------------------------

class FeatureService(_JsonClient):
    """Predicate-filtered GeoJSON queries over the column-face and rail-line layers."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = FEATURE_SERVICE_URL,
        workspace: str = FEATURE_WORKSPACE,
        column_type: str = COLUMN_TYPENAME,
        rail_type: str = RAIL_TYPENAME,
        srs: str = FEATURE_SRS,
        notifier: Optional[Notifier] = None,
    ):
        super().__init__(client, notifier)
        self.ows_url = f"{base_url.rstrip('/')}/{workspace}/ows"
        self.column_type = column_type
        self.rail_type = rail_type
        self.srs = srs

    async def query(self, type_name: str, cql: str = "") -> Dict[str, Any]:
        """Raw ``GetFeature``; raises ``FeatureServiceError``."""
        params = {
            "service": "WFS",
            "version": WFS_VERSION,
            "request": "GetFeature",
            "typeName": type_name,
            "outputFormat": "application/json",
            "srsName": self.srs,
        }
        if cql:
            params["CQL_FILTER"] = cql
        data = await self._request_json("GET", self.ows_url, params=params)
        return data or {}

    async def query_features(self, type_name: str, cql: str = "", where: str = "") -> List[Dict[str, Any]]:
        try:
            data = await self.query(type_name, cql)
        except FeatureServiceError as e:
            handle_error(e, self.notifier, where=where or f"FeatureService.query[{type_name}]")
            return []
        return list(data.get("features") or [])

    # -- structural faces ----------------------------------------------------

    async def fetch_columns(self, buildings=(), bays=(), pairs=()) -> List[Dict[str, Any]]:
        cql = column_filter(buildings, bays, pairs)
        return await self.query_features(self.column_type, cql, where="FeatureService.fetch_columns")

    async def fetch_building_faces(self, building: str) -> List[Dict[str, Any]]:
        return await self.query_features(
            self.column_type, f"bldg_id={_q(building)}", where="FeatureService.fetch_building_faces"
        )

    async def get_column_by_id(self, building: str, column: Any) -> Optional[Dict[str, Any]]:
        cid = parse_column_id(column)
        feats = await self.query_features(
            self.column_type,
            f"bldg_id={_q(building)} AND id={cid}",
            where="FeatureService.get_column_by_id",
        )
        return feats[0] if feats else None

    async def get_building_by_column(self, column: Any) -> Optional[str]:
        cid = parse_column_id(column)
        feats = await self.query_features(
            self.column_type, f"id={cid}", where="FeatureService.get_building_by_column"
        )
        if not feats:
            return None
        props = feats[0].get("properties") or {}
        building = props.get("bldg_id", props.get("BLDG_ID"))
        return normalize_id(building) if building is not None else None

    # -- rail lines ----------------------------------------------------------

    async def fetch_rail_lines(self, building: str, bay: str) -> List[Dict[str, Any]]:
        return await self.query_features(
            self.rail_type,
            f"(bldg_id={_q(building)} AND bay={_q(bay)})",
            where="FeatureService.fetch_rail_lines",
        )

    async def fetch_rails(self, buildings=(), pairs=()) -> List[Dict[str, Any]]:
        cql = rail_filter(buildings, pairs)
        if not cql:
            return []
        return await self.query_features(self.rail_type, cql, where="FeatureService.fetch_rails")


# ---------------------------------------------------------------------------
# Sensor / worker / audit REST
# ---------------------------------------------------------------------------

class SensorApi(_JsonClient):

    def __init__(self, client: httpx.AsyncClient, base_url: str = SENSOR_API_URL,
                 notifier: Optional[Notifier] = None):
        super().__init__(client, notifier)
        self.base_url = base_url.rstrip("/")

    def _url(self, name: str, **kw) -> str:
        return self.base_url + API_PATHS[name].format(**kw)

    async def list_sensors_by_columns(self, column_ids: Iterable[Any]) -> List[SensorRecord]:
        csv = ",".join(normalize_id(c) for c in column_ids)
        if not csv:
            return []
        try:
            rows = await self._request_json(
                "GET", self._url("sensors_by_columns"), params={"pillar_ids": csv}
            )
        except FeatureServiceError as e:
            handle_error(e, self.notifier, where="SensorApi.list_sensors_by_columns",
                         user_message=MSG_SENSOR_FETCH)
            return []
        out = []
        for row in rows or []:
            try:
                out.append(SensorRecord.model_validate(row))
            except ValueError as e:
                logger.warning(f"skipping malformed sensor row {row!r}: {e}")
        return out

    async def get_sensor_detail(self, sensor_id: str) -> Optional[SensorRecord]:
        try:
            row = await self._request_json(
                "GET", self._url("sensor_detail"), allow_404=True, params={"ble_id": sensor_id}
            )
        except FeatureServiceError as e:
            handle_error(e, self.notifier, where="SensorApi.get_sensor_detail",
                         user_message=MSG_SENSOR_FETCH)
            return None
        if not row:
            return None
        try:
            return SensorRecord.model_validate(row)
        except ValueError as e:
            logger.warning(f"malformed sensor detail for {sensor_id}: {e}")
            return None

    async def get_worker_info(self, building: str) -> Optional[WorkerInfo]:
        try:
            row = await self._request_json(
                "GET", self._url("worker_info", building=building), allow_404=True
            )
        except FeatureServiceError as e:
            logger.warning(f"worker info fetch failed for building {building}: {e}")
            return None
        if not row:
            return None
        try:
            return WorkerInfo.model_validate(row)
        except ValueError as e:
            logger.warning(f"malformed worker info for building {building}: {e}")
            return None

    async def write_check_log(self, entry: CheckLogEntry) -> bool:
        try:
            await self._request_json(
                "POST", self._url("check_log"), expect_json=False, json=entry.model_dump()
            )
        except FeatureServiceError as e:
            handle_error(e, self.notifier, where="SensorApi.write_check_log",
                         user_message="Saving the check log failed.")
            return False
        logger.info("check log written", extra={"building": entry.bldg_id, "sensor_id": entry.ble_id})
        return True
