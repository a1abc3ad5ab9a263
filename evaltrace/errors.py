"""Error taxonomy for the traceability engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class DataFetchError(Exception):
    """An upstream read failed; the build is abandoned with no partial result."""
    def __init__(self, project_id: int | None, source: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to load {source} for project {project_id}{detail}")
        self.project_id = project_id
        self.source = source
        self.cause = cause


class EntityNotFound(Exception):
    """A requested requirement, vendor or insight does not exist."""
    def __init__(self, entity: str, entity_id: int | None):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


@dataclass(frozen=True)
class InvariantViolation:
    """Setup inconsistency reported as a warning, never raised."""
    code: str
    message: str
    project_id: int | None = None
    entity_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code, "message": self.message, "project_id": self.project_id,
            "entity_id": self.entity_id, "details": dict(self.details),
        }
