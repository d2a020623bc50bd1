"""
Versioned stored-record upgrades for canonical projects.

Every stored project carries a ``schemaVersion`` tag. Records written before
the tag existed are version 1. Parsing goes through a discriminated union on
the tag, and each version has exactly one registered step that lifts it to
the next version, so adding a schema change means adding a record model and a
step rather than probing for missing fields.

Version history:
    1: untagged; ``displayName`` and ``remoteId`` may be absent
    2: ``displayName`` always present (backfilled from ``id``)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from repolink.core.sync.models import CURRENT_SCHEMA_VERSION, CanonicalProject

logger = logging.getLogger(__name__)


class ProjectRecordV1(BaseModel):
    """Pre-versioning record; only ``id`` is guaranteed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    schema_version: Literal[1] = 1
    id: str
    remote_id: str | None = None
    display_name: str | None = None


class ProjectRecordV2(CanonicalProject):
    schema_version: Literal[2] = 2


StoredProjectRecord = Annotated[
    Union[ProjectRecordV1, ProjectRecordV2],
    Field(discriminator="schema_version"),
]

_record_adapter: TypeAdapter[ProjectRecordV1 | ProjectRecordV2] = TypeAdapter(StoredProjectRecord)


def _upgrade_v1(record: ProjectRecordV1) -> dict[str, Any]:
    data = record.model_dump(by_alias=True)
    data["displayName"] = record.display_name or record.id
    data["remoteId"] = record.remote_id or record.id
    data["schemaVersion"] = 2
    return data


UPGRADE_STEPS: dict[int, Callable[[Any], dict[str, Any]]] = {
    1: _upgrade_v1,
}


def parse_record(raw: dict[str, Any]) -> ProjectRecordV1 | ProjectRecordV2:
    """Parse a stored record into the model for its schema version."""
    tagged = {"schemaVersion": 1, **raw}
    return _record_adapter.validate_python(tagged)


def upgrade_record(raw: dict[str, Any]) -> tuple[CanonicalProject, bool]:
    """
    Bring one stored record up to the current schema.

    Args:
        raw: Record as read from the store

    Returns:
        Tuple of (current-schema project, whether any upgrade step ran)

    Raises:
        pydantic.ValidationError: If the record is malformed for its version
    """
    record = parse_record(raw)
    upgraded = False
    while record.schema_version < CURRENT_SCHEMA_VERSION:
        step = UPGRADE_STEPS[record.schema_version]
        record = parse_record(step(record))
        upgraded = True
    return CanonicalProject.model_validate(record.model_dump(by_alias=True)), upgraded


@dataclass
class UpgradeResult:
    """Outcome of reading a stored project list."""

    projects: list[CanonicalProject] = field(default_factory=list)
    upgraded: bool = False
    unreadable: list[Any] = field(default_factory=list)


def upgrade_records(raw_records: list[Any]) -> UpgradeResult:
    """
    Upgrade a stored project list.

    Malformed records (or records from a newer schema) are returned in
    ``unreadable`` so they can be written back untouched.
    """
    result = UpgradeResult()
    for raw in raw_records:
        if not isinstance(raw, dict):
            logger.error("Keeping non-object project record aside: %r", raw)
            result.unreadable.append(raw)
            continue
        try:
            project, upgraded = upgrade_record(raw)
        except PydanticValidationError as e:
            logger.error("Keeping unreadable project record %s aside: %s", raw.get("id"), e)
            result.unreadable.append(raw)
            continue
        if upgraded:
            logger.info(
                "Upgraded project %s to schema v%d", project.id, CURRENT_SCHEMA_VERSION
            )
        result.upgraded = result.upgraded or upgraded
        result.projects.append(project)
    return result


__all__ = [
    "ProjectRecordV1",
    "ProjectRecordV2",
    "UPGRADE_STEPS",
    "UpgradeResult",
    "parse_record",
    "upgrade_record",
    "upgrade_records",
]
