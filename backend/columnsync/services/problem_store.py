"""
problem_store.py: open/resolved lifecycle of reported column problems.

States: absent (no record) → OPEN → RESOLVED, with OPEN re-enterable from
RESOLVED through ``open``. A record owns the list of highlight entities drawn
for it; it only becomes RESOLVED once that list is empty.

The store never touches visibility itself. Removal of highlight entities is
delegated to the ``remove_entity`` callable and follow-up work (restoring
columns, building purge) to the ``on_empty`` callback.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from columnsync.models.entities import HighlightTag, RenderEntity
from columnsync.services.errors import normalize_bay, normalize_id

logger = logging.getLogger("columnsync.problems")


class ProblemStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


@dataclass
class ProblemMeta:
    building: str
    column: str
    bay: Optional[str] = None

    def as_dict(self) -> dict:
        return {"building": self.building, "column": self.column, "bay": self.bay}


@dataclass
class ProblemRecord:
    meta: ProblemMeta
    status: ProblemStatus = ProblemStatus.OPEN
    entities: List[RenderEntity] = field(default_factory=list)
    # tags of highlights already removed by partial (bay-scoped) resolutions,
    # handed to on_empty together with the final batch
    removed_tags: List[HighlightTag] = field(default_factory=list)


def problem_key(building, column) -> str:
    return f"{normalize_id(building)}::{normalize_id(column)}"


class ProblemStore:
    def __init__(self):
        self._records: Dict[str, ProblemRecord] = {}

    def get(self, building, column) -> Optional[ProblemRecord]:
        return self._records.get(problem_key(building, column))

    def status(self, building, column) -> Optional[ProblemStatus]:
        rec = self.get(building, column)
        return rec.status if rec else None

    def open(self, building, column, bay: Optional[str] = None) -> ProblemRecord:
        """Create the record in OPEN, or force an existing one back to OPEN."""
        key = problem_key(building, column)
        bay = normalize_bay(bay) or None
        rec = self._records.get(key)
        if rec is None:
            rec = ProblemRecord(meta=ProblemMeta(normalize_id(building), normalize_id(column), bay))
            self._records[key] = rec
            logger.info("problem opened", extra={"building": rec.meta.building,
                                                 "column": rec.meta.column, "bay": bay})
        else:
            rec.status = ProblemStatus.OPEN
            if bay:
                rec.meta.bay = bay
        return rec

    def resolve(
        self,
        building,
        column,
        bay: Optional[str] = None,
        remove_entity: Optional[Callable[[RenderEntity], object]] = None,
        on_empty: Optional[Callable[[List[HighlightTag]], None]] = None,
    ) -> bool:
        """
        Remove the record's highlights (only those tagged ``bay`` when given).

        Returns False when there is no OPEN record. When the highlight list ends
        up empty the record turns RESOLVED and ``on_empty`` receives the tags of
        every highlight removed since the record was opened.
        """
        rec = self.get(building, column)
        if rec is None or rec.status is not ProblemStatus.OPEN:
            return False

        bay = normalize_bay(bay) or None
        keep: List[RenderEntity] = []
        for ent in rec.entities:
            tag = ent.tag
            matches = bay is None or (isinstance(tag, HighlightTag) and tag.bay == bay)
            if not matches:
                keep.append(ent)
                continue
            if isinstance(tag, HighlightTag):
                rec.removed_tags.append(tag)
            if remove_entity is not None:
                remove_entity(ent)
        rec.entities = keep

        if rec.entities:
            logger.info(
                f"partial resolution, {len(keep)} highlight(s) remain",
                extra={"building": rec.meta.building, "column": rec.meta.column, "bay": bay},
            )
            return True

        rec.status = ProblemStatus.RESOLVED
        removed = rec.removed_tags
        rec.removed_tags = []
        logger.info("problem resolved", extra={"building": rec.meta.building, "column": rec.meta.column})
        if on_empty is not None:
            on_empty(removed)
        return True

    def add_entities(self, building, column, entities: List[RenderEntity]) -> None:
        rec = self.get(building, column)
        if rec is not None:
            rec.entities.extend(entities)

    def list_open(self) -> List[ProblemMeta]:
        return [r.meta for r in self._records.values() if r.status is ProblemStatus.OPEN]

    def open_buildings(self) -> Set[str]:
        return {r.meta.building for r in self._records.values() if r.status is ProblemStatus.OPEN}
