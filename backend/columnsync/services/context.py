"""
SyncContext: the one owner of every cache and engine.

Built once per application (see ``columnsync.main``) or per test. Nothing in
the engines lives at module level, so two contexts never share state.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from columnsync.services.annotation import AnnotationLayer
from columnsync.services.blink import AsyncioScheduler, Scheduler
from columnsync.services.column_index import ColumnIndex
from columnsync.services.errors import Notifier
from columnsync.services.feature_service import FeatureService, SensorApi
from columnsync.services.highlight_engine import HighlightEngine
from columnsync.services.problem_store import ProblemStore
from columnsync.services.rail_engine import RailCraneEngine
from columnsync.services.scene import Scene
from columnsync.services.sensor_engine import SensorPlacementEngine

logger = logging.getLogger("columnsync.context")


@dataclass
class SyncContext:
    scene: Scene
    notifier: Notifier
    features: FeatureService
    sensor_api: SensorApi
    store: ProblemStore
    columns: ColumnIndex
    highlights: HighlightEngine
    sensors: SensorPlacementEngine
    rails: RailCraneEngine
    annotations: AnnotationLayer
    scheduler: Scheduler

    def shutdown(self) -> None:
        """Cancel background timers; called before the event loop goes away."""
        self.sensors.stop_all_blinks()


def build_context(
    client: Optional[httpx.AsyncClient] = None,
    features: Optional[FeatureService] = None,
    sensor_api: Optional[SensorApi] = None,
    scheduler: Optional[Scheduler] = None,
    notifier: Optional[Notifier] = None,
    scene: Optional[Scene] = None,
) -> SyncContext:
    """Wire every engine. Collaborators not passed in are built over ``client``."""
    notifier = notifier or Notifier()
    if features is None or sensor_api is None:
        if client is None:
            raise ValueError("an httpx.AsyncClient is required unless both clients are given")
        features = features or FeatureService(client, notifier=notifier)
        sensor_api = sensor_api or SensorApi(client, notifier=notifier)
    scene = scene or Scene()
    scheduler = scheduler or AsyncioScheduler()

    store = ProblemStore()
    columns = ColumnIndex(scene, features)
    ctx = SyncContext(
        scene=scene,
        notifier=notifier,
        features=features,
        sensor_api=sensor_api,
        store=store,
        columns=columns,
        highlights=HighlightEngine(scene, columns, store, features),
        sensors=SensorPlacementEngine(scene, columns, sensor_api, features, scheduler),
        rails=RailCraneEngine(scene, features),
        annotations=AnnotationLayer(sensor_api),
        scheduler=scheduler,
    )
    logger.debug("sync context built")
    return ctx
