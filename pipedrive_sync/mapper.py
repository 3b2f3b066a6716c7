from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from pipedrive_sync.errors import ConfigurationError

logger = logging.getLogger(__name__)


class PersonField(str, Enum):
    """Pipedrive person fields a mapping table may target."""

    NAME = "name"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    EMAIL = "email"
    PHONE = "phone"
    OWNER_ID = "owner_id"
    ORG_ID = "org_id"
    VISIBLE_TO = "visible_to"
    MARKETING_STATUS = "marketing_status"
    ADD_TIME = "add_time"
    LABEL = "label"
    LABEL_IDS = "label_ids"


IDENTIFYING_FIELD = PersonField.NAME.value

# email/phone are multi-value fields in Pipedrive
MULTI_VALUE_LABELS = {
    PersonField.EMAIL.value: "work",
    PersonField.PHONE.value: "home",
}

# Custom person fields are addressed by a 40 char hash key
_CUSTOM_FIELD_KEY = re.compile(r"^[0-9a-f]{40}$")
_PATH_SEGMENT = re.compile(r"^([^.\[\]]+)((?:\[\d+\])*)$")
_INDEX = re.compile(r"\[(\d+)\]")

PathStep = Union[str, int]


_PERSON_FIELDS = frozenset(f.value for f in PersonField)


def is_known_target(target_field: str) -> bool:
    if target_field in _PERSON_FIELDS:
        return True
    return bool(_CUSTOM_FIELD_KEY.match(target_field))


@dataclass(frozen=True)
class MappingEntry:
    """One row of the mapping table: Pipedrive field <- path into the input record."""

    target_field: str
    source_path: str

    def __post_init__(self) -> None:
        target = self.target_field.value if isinstance(self.target_field, PersonField) else self.target_field
        if not target or not target.strip():
            raise ConfigurationError("Mapping entry has an empty pipedrive key")
        if not is_known_target(target):
            raise ConfigurationError(f"Unknown person field in mapping: '{target}'")
        object.__setattr__(self, "target_field", target)


def parse_path(path: str) -> Tuple[PathStep, ...]:
    """
    Split a source path like ``contact.emails[0].value`` into lookup steps.

    Keys are separated by dots; each key may carry ``[n]`` list indexes. A
    numeric key (``emails.0``) also indexes into a list when resolved.
    Raises ConfigurationError for an empty path, empty keys or stray brackets.
    """
    if not isinstance(path, str) or not path:
        raise ConfigurationError(f"Malformed source path: {path!r}")

    steps: List[PathStep] = []
    for segment in path.split("."):
        m = _PATH_SEGMENT.match(segment)
        if not m:
            raise ConfigurationError(f"Malformed source path: {path!r}")
        steps.append(m.group(1))
        steps.extend(int(i) for i in _INDEX.findall(m.group(2)))
    return tuple(steps)


def resolve_path(record: Dict[str, Any], path: str) -> Optional[Any]:
    """Return the value at ``path`` in ``record``, or None when any step is missing."""
    current: Any = record
    for step in parse_path(path):
        if isinstance(step, int):
            if not isinstance(current, list) or step >= len(current):
                return None
            current = current[step]
        elif isinstance(current, list) and step.isdigit():
            # "emails.0" addresses a list element like "emails[0]"
            index = int(step)
            if index >= len(current):
                return None
            current = current[index]
        else:
            if not isinstance(current, dict) or step not in current:
                return None
            current = current[step]
        if current is None:
            return None
    return current


def shape_value(target_field: str, value: Any) -> Any:
    label = MULTI_VALUE_LABELS.get(target_field)
    if label is None:
        return value
    return [{"value": value, "primary": True, "label": label}]


class PersonPayload:
    """Builds the JSON body for a person create/update call."""

    def __init__(self) -> None:
        self._fields: Dict[str, Any] = {}

    def set(self, target_field: str, value: Optional[Any]) -> None:
        # absent values are never sent, so Pipedrive keeps whatever it has
        if value is None:
            return
        self._fields[target_field] = shape_value(target_field, value)

    def has(self, target_field: str) -> bool:
        return target_field in self._fields

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._fields)


def build_payload(record: Dict[str, Any], mappings: Sequence[MappingEntry]) -> Dict[str, Any]:
    payload = PersonPayload()
    for entry in mappings:
        value = resolve_path(record, entry.source_path)
        logger.debug("Resolved %s <- %s: %r", entry.target_field, entry.source_path, value)
        payload.set(entry.target_field, value)
    return payload.to_dict()


def _warn_duplicates(entries: Sequence[MappingEntry]) -> None:
    seen = set()
    for entry in entries:
        if entry.target_field in seen:
            logger.warning(
                "Pipedrive key '%s' is mapped more than once; the last entry (%s) wins",
                entry.target_field,
                entry.source_path,
            )
        seen.add(entry.target_field)


def _load_csv(path: Path) -> List[MappingEntry]:
    try:
        mp = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, UnicodeDecodeError, pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise ConfigurationError(f"Cannot read mapping file {path}: {e}") from e

    missing = {"pipedrive_key", "input_key"} - set(mp.columns)
    if missing:
        raise ConfigurationError(f"Mapping file {path} is missing columns: {', '.join(sorted(missing))}")

    return [
        MappingEntry(target_field=key.strip(), source_path=src.strip())
        for key, src in zip(mp["pipedrive_key"].astype(str), mp["input_key"].astype(str))
    ]


def _load_json(path: Path) -> List[MappingEntry]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read mapping file {path}: {e}") from e

    if not isinstance(raw, list):
        raise ConfigurationError(f"Mapping file {path} must contain a list of mappings")

    entries = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or "pipedriveKey" not in item or "inputKey" not in item:
            raise ConfigurationError(f"Mapping #{i} in {path} needs 'pipedriveKey' and 'inputKey'")
        entries.append(MappingEntry(target_field=str(item["pipedriveKey"]), source_path=str(item["inputKey"])))
    return entries


def load_mapping(path: Union[str, Path]) -> List[MappingEntry]:
    """Load an ordered mapping table from a CSV (pipedrive_key,input_key) or JSON file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Mapping file not found: {path}")

    entries = _load_json(path) if path.suffix.lower() == ".json" else _load_csv(path)
    _warn_duplicates(entries)
    logger.debug("Loaded %d mapping entries from %s", len(entries), path)
    return entries
