from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Protocol, Sequence

from pipedrive_sync.errors import ConfigurationError, OrchestrationError
from pipedrive_sync.mapper import IDENTIFYING_FIELD, MappingEntry, build_payload, resolve_path

logger = logging.getLogger(__name__)

STAGE_VALIDATE_MAPPING = "validate mapping"
STAGE_VALIDATE_IDENTITY = "validate identity"
STAGE_BUILD_PAYLOAD = "build payload"
STAGE_LOOKUP = "lookup"
STAGE_UPSERT = "upsert"


class PersonStore(Protocol):
    def find_person_by_name(self, name: str) -> Optional[Dict[str, Any]]: ...

    def upsert_person(self, payload: Dict[str, Any], person_id: Optional[Any] = None) -> Dict[str, Any]: ...


@dataclass
class SyncPlan:
    """What a sync would do: the resolved name, the payload and the person to update (if any)."""
    name: str
    payload: Dict[str, Any]
    existing_id: Optional[Any] = None

    @property
    def action(self) -> str:
        return "update" if self.existing_id is not None else "create"


@dataclass
class SyncResult:
    record: Dict[str, Any]
    action: str  # "created" | "updated"
    payload: Dict[str, Any]


@contextmanager
def _stage(name: str, person_name: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except OrchestrationError:
        raise
    except Exception as e:
        raise OrchestrationError(name, f"Error during {name}", e, person_name=person_name) from e


def find_identity_mapping(mappings: Sequence[MappingEntry]) -> MappingEntry:
    for entry in mappings:
        if entry.target_field == IDENTIFYING_FIELD:
            return entry
    raise ConfigurationError(f"No mapping for identifying field '{IDENTIFYING_FIELD}'")


def resolve_identity(record: Dict[str, Any], entry: MappingEntry) -> str:
    value = resolve_path(record, entry.source_path)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(
            f"Missing or non-string identifying value at input key '{entry.source_path}'"
        )
    return value


def plan_sync(record: Dict[str, Any], mappings: Sequence[MappingEntry], client: PersonStore) -> SyncPlan:
    """Validate the mapping and input, build the payload and look up the existing person."""
    with _stage(STAGE_VALIDATE_MAPPING):
        name_entry = find_identity_mapping(mappings)

    with _stage(STAGE_VALIDATE_IDENTITY):
        name = resolve_identity(record, name_entry)

    with _stage(STAGE_BUILD_PAYLOAD, name):
        payload = build_payload(record, mappings)

    with _stage(STAGE_LOOKUP, name):
        existing = client.find_person_by_name(name)

    existing_id = existing.get("id") if existing else None
    if existing_id is not None:
        logger.info("Person %r exists (id=%s), will update", name, existing_id)
    else:
        logger.info("Person %r not found, will create", name)
    return SyncPlan(name=name, payload=payload, existing_id=existing_id)


def sync_person(record: Dict[str, Any], mappings: Sequence[MappingEntry], client: PersonStore) -> SyncResult:
    """
    Create or update one Pipedrive person from ``record``.

    Runs validate mapping -> validate identity -> build payload -> lookup -> upsert
    and stops at the first failing stage with an OrchestrationError naming it.
    """
    plan = plan_sync(record, mappings, client)

    with _stage(STAGE_UPSERT, plan.name):
        person = client.upsert_person(plan.payload, plan.existing_id)

    return SyncResult(
        record=person,
        action="updated" if plan.existing_id is not None else "created",
        payload=plan.payload,
    )
