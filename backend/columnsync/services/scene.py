"""
In-memory rendering surface.

Holds the render-entity collection and model primitives the engines mutate,
and counts redraw requests (render-on-demand: nothing is redrawn unless an
engine asks). A real viewer adapter only has to mirror these calls.
"""
import logging
from typing import Dict, Iterable, List, Optional, Type

from shapely.geometry import Point, Polygon

from columnsync.models.entities import (
    EntityTag,
    HighlightTag,
    ModelInstance,
    PolygonGeometry,
    RenderEntity,
)

logger = logging.getLogger("columnsync.scene")


class Scene:
    def __init__(self):
        self._entities: Dict[str, RenderEntity] = {}
        self._primitives: List[ModelInstance] = []
        self.render_requests = 0

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def add(self, entity: RenderEntity) -> RenderEntity:
        if entity.id in self._entities:
            raise ValueError(f"entity id already present: {entity.id}")
        self._entities[entity.id] = entity
        return entity

    def remove(self, entity: Optional[RenderEntity]) -> bool:
        if entity is None or not self.contains(entity):
            return False
        del self._entities[entity.id]
        return True

    def remove_all(self, entities: Iterable[RenderEntity]) -> int:
        removed = sum(1 for e in list(entities) if self.remove(e))
        if removed:
            self.request_render()
        return removed

    def contains(self, entity: Optional[RenderEntity]) -> bool:
        return entity is not None and self._entities.get(entity.id) is entity

    def get_by_id(self, entity_id: str) -> Optional[RenderEntity]:
        return self._entities.get(entity_id)

    def values(self) -> List[RenderEntity]:
        return list(self._entities.values())

    def of_type(self, tag_type: Type[EntityTag]) -> List[RenderEntity]:
        return [e for e in self._entities.values() if isinstance(e.tag, tag_type)]

    def __len__(self) -> int:
        return len(self._entities)

    # ------------------------------------------------------------------
    # Model primitives
    # ------------------------------------------------------------------

    @property
    def primitives(self) -> List[ModelInstance]:
        return list(self._primitives)

    def add_primitive(self, model: ModelInstance) -> ModelInstance:
        self._primitives.append(model)
        return model

    def remove_primitive(self, model: ModelInstance) -> bool:
        if model not in self._primitives:
            return False
        self._primitives.remove(model)
        model.destroyed = True
        return True

    # ------------------------------------------------------------------
    # Picking / redraw
    # ------------------------------------------------------------------

    def drill_pick(self, lon: float, lat: float, limit: int = 16) -> List[RenderEntity]:
        """Visible polygon entities whose footprint covers the ground point, highlights first."""
        pt = Point(lon, lat)
        hits = []
        for ent in self._entities.values():
            geom = ent.geometry
            if not ent.show or not isinstance(geom, PolygonGeometry) or len(geom.ring) < 3:
                continue
            if Polygon(geom.ring).covers(pt):
                hits.append(ent)
        hits.sort(key=lambda e: 0 if isinstance(e.tag, HighlightTag) else 1)
        return hits[:limit]

    def pick(self, lon: float, lat: float) -> Optional[RenderEntity]:
        hits = self.drill_pick(lon, lat, limit=1)
        return hits[0] if hits else None

    def request_render(self) -> None:
        self.render_requests += 1
