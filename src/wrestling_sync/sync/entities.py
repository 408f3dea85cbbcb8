"""Entity definitions for the wrestling promotion data kept in sync with Notion.

Each definition maps Notion page properties onto local fields and declares
which fields reference other entity types. Dependencies between entity
types are derived from those references, so the sync order follows the
data model instead of a hand-maintained list.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .exceptions import RecordError
from .models import EntityDescriptor, RemoteRecord


# Placeholder values used in Notion date columns for unscheduled entries
DATE_PLACEHOLDERS = {"", "tbd", "tba", "n/a", "date tbd", "unknown"}

Validator = Callable[[Any], Any]


def extract_property_value(value: Any) -> Any:
    """Reduce a Notion property object to a plain Python value.

    Plain values pass through unchanged, so exports that already hold
    flattened values are accepted as well.
    """
    if not isinstance(value, Mapping):
        return value

    prop_type = value.get("type")
    if prop_type is None:
        # Untyped property objects: pick the first known key
        for key in ("title", "rich_text", "select", "multi_select", "number",
                    "checkbox", "date", "relation", "url", "status"):
            if key in value:
                prop_type = key
                break
        else:
            return value

    content = value.get(prop_type)
    if prop_type in ("title", "rich_text"):
        if not content:
            return None
        parts = []
        for item in content:
            if isinstance(item, Mapping):
                text = item.get("plain_text")
                if text is None and isinstance(item.get("text"), Mapping):
                    text = item["text"].get("content")
                parts.append(text or "")
            else:
                parts.append(str(item))
        joined = "".join(parts).strip()
        return joined or None
    if prop_type in ("select", "status"):
        return content.get("name") if isinstance(content, Mapping) else content
    if prop_type == "multi_select":
        return [item.get("name") for item in content or [] if isinstance(item, Mapping)]
    if prop_type == "date":
        return content.get("start") if isinstance(content, Mapping) else content
    if prop_type == "relation":
        return [item.get("id") for item in content or [] if isinstance(item, Mapping)]
    return content


def as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text.upper() == "N/A":
        return None
    return text or None


def as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected a whole number, got {value!r}")
        return int(value)
    return int(str(value).strip())


def as_non_negative_int(value: Any) -> Optional[int]:
    number = as_int(value)
    if number is not None and number < 0:
        raise ValueError(f"expected a non-negative number, got {number}")
    return number


def as_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "y"):
        return True
    if text in ("false", "no", "0", "n"):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def as_date(value: Any) -> Optional[str]:
    """Normalize a date to ISO format; placeholders become None."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in DATE_PLACEHOLDERS:
        return None
    # Notion dates may carry a time component
    return date.fromisoformat(text[:10]).isoformat()


def as_reference(value: Any) -> Optional[str]:
    """A single relation: the external ID of the referenced page."""
    if isinstance(value, (list, tuple)):
        ids = [item for item in value if item]
        if len(ids) > 1:
            raise ValueError(f"expected a single relation, got {len(ids)}")
        return ids[0] if ids else None
    return as_text(value)


def as_reference_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item]
    return [str(value)]


@dataclass(frozen=True)
class EntityDefinition:
    """How one entity type maps between Notion and the local store.

    Attributes:
        name: Entity type key (e.g. ``wrestlers``)
        remote_fields: Notion property name -> local field name
        references: Local field -> referenced entity type
        required_fields: Local fields every record must carry
        validators: Local field -> converter raising ValueError on bad input
        defaults: Values applied to newly inserted rows only; fields absent
            from ``remote_fields`` are local-only and never overwritten
    """
    name: str
    remote_fields: Mapping[str, str]
    references: Mapping[str, str] = field(default_factory=dict)
    required_fields: Tuple[str, ...] = ("name",)
    validators: Mapping[str, Validator] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)

    @property
    def descriptor(self) -> EntityDescriptor:
        dependencies = frozenset(
            target for target in self.references.values() if target != self.name
        )
        return EntityDescriptor(self.name, dependencies)

    @property
    def local_fields(self) -> FrozenSet[str]:
        return frozenset(self.remote_fields.values())

    @property
    def local_only_fields(self) -> FrozenSet[str]:
        return frozenset(self.defaults) - self.local_fields

    def map_remote(self, record: RemoteRecord) -> Dict[str, Any]:
        """Map a remote record onto local fields.

        Only properties present with a non-null value are returned, so a
        merge never clears a local value the remote did not carry.

        Raises:
            RecordError: If a value is invalid or a required field is missing
        """
        if not record.external_id:
            raise RecordError(self.name, None, "record has no ID")
        if not isinstance(record.fields, Mapping):
            raise RecordError(self.name, record.external_id, "record properties are not a mapping")

        mapped: Dict[str, Any] = {}
        for remote_name, local_name in self.remote_fields.items():
            if remote_name not in record.fields:
                continue
            value = extract_property_value(record.fields[remote_name])
            converter = self.validators.get(local_name, as_text)
            try:
                value = converter(value)
            except (TypeError, ValueError) as e:
                raise RecordError(
                    self.name, record.external_id, f"invalid value for '{remote_name}': {e}"
                ) from e
            if value is not None:
                mapped[local_name] = value

        missing = [name for name in self.required_fields if name not in mapped]
        if missing:
            raise RecordError(
                self.name, record.external_id, f"missing required field(s): {', '.join(missing)}"
            )
        return mapped

    def reference_ids(self, fields: Mapping[str, Any]) -> List[Tuple[str, str]]:
        """List (entity_type, external_id) pairs referenced by mapped fields."""
        pairs = []
        for local_name, target in self.references.items():
            value = fields.get(local_name)
            if value is None:
                continue
            for external_id in (value if isinstance(value, list) else [value]):
                pairs.append((target, external_id))
        return pairs

    def with_defaults(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        return {**self.defaults, **fields}

    def merge(self, existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Dict[str, Any]:
        """Overlay remote-sourced values on a local row, keeping local-only data."""
        merged = dict(existing)
        for key, value in incoming.items():
            if key in self.local_fields and value is not None:
                merged[key] = value
        return merged

    def to_remote(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Project local fields onto Notion property names for outbound pushes."""
        return {
            remote_name: fields[local_name]
            for remote_name, local_name in self.remote_fields.items()
            if fields.get(local_name) is not None
        }


TEMPLATES = EntityDefinition(
    name="templates",
    remote_fields={
        "Name": "name",
        "Description": "description",
        "Show Type": "show_type",
    },
)

SEASONS = EntityDefinition(
    name="seasons",
    remote_fields={
        "Name": "name",
        "Description": "description",
        "Start Date": "start_date",
        "End Date": "end_date",
        "Active": "is_active",
    },
    validators={
        "start_date": as_date,
        "end_date": as_date,
        "is_active": as_bool,
    },
)

INJURY_TYPES = EntityDefinition(
    name="injury_types",
    remote_fields={
        "Name": "name",
        "Health Effect": "health_effect",
        "Stamina Effect": "stamina_effect",
        "Card Effect": "card_effect",
        "Special Effects": "special_effects",
    },
    validators={
        "health_effect": as_int,
        "stamina_effect": as_int,
        "card_effect": as_int,
    },
)

FACTIONS = EntityDefinition(
    name="factions",
    # The faction leader is a wrestler; it is kept local so factions stay a
    # root entity and wrestlers can reference their faction.
    remote_fields={
        "Name": "name",
        "Description": "description",
        "Active": "is_active",
        "Formed Date": "formed_date",
        "Disbanded Date": "disbanded_date",
    },
    validators={
        "is_active": as_bool,
        "formed_date": as_date,
        "disbanded_date": as_date,
    },
    defaults={"leader": None},
)

SHOWS = EntityDefinition(
    name="shows",
    remote_fields={
        "Name": "name",
        "Description": "description",
        "Date": "show_date",
        "Show Type": "show_type",
        "Season": "season",
        "Template": "template",
    },
    references={"season": "seasons", "template": "templates"},
    validators={
        "show_date": as_date,
        "season": as_reference,
        "template": as_reference,
    },
)

WRESTLERS = EntityDefinition(
    name="wrestlers",
    remote_fields={
        "Name": "name",
        "Description": "description",
        "Gender": "gender",
        "Tier": "tier",
        "Deck Size": "deck_size",
        "Starting Health": "starting_health",
        "Starting Stamina": "starting_stamina",
        "Low Health": "low_health",
        "Low Stamina": "low_stamina",
        "Player": "is_player",
        "Faction": "faction",
    },
    references={"faction": "factions"},
    validators={
        "deck_size": as_non_negative_int,
        "starting_health": as_non_negative_int,
        "starting_stamina": as_non_negative_int,
        "low_health": as_non_negative_int,
        "low_stamina": as_non_negative_int,
        "is_player": as_bool,
        "faction": as_reference,
    },
    # fans and image_url are game data entered locally
    defaults={
        "deck_size": 15,
        "fans": 0,
        "bumps": 0,
        "image_url": None,
        "is_player": False,
    },
)

TEAMS = EntityDefinition(
    name="teams",
    remote_fields={
        "Name": "name",
        "Member 1": "wrestler_1",
        "Member 2": "wrestler_2",
        "Faction": "faction",
        "Status": "status",
    },
    references={
        "wrestler_1": "wrestlers",
        "wrestler_2": "wrestlers",
        "faction": "factions",
    },
    required_fields=("name", "wrestler_1", "wrestler_2"),
    validators={
        "wrestler_1": as_reference,
        "wrestler_2": as_reference,
        "faction": as_reference,
    },
)

SEGMENTS = EntityDefinition(
    name="segments",
    remote_fields={
        "Name": "name",
        "Show": "show",
        "Segment Type": "segment_type",
        "Participants": "participants",
        "Winners": "winners",
        "Narration": "narration",
    },
    references={
        "show": "shows",
        "participants": "wrestlers",
        "winners": "wrestlers",
    },
    required_fields=("name", "show"),
    validators={
        "show": as_reference,
        "participants": as_reference_list,
        "winners": as_reference_list,
    },
)


DEFAULT_ENTITIES: Tuple[EntityDefinition, ...] = (
    TEMPLATES,
    SEASONS,
    INJURY_TYPES,
    FACTIONS,
    SHOWS,
    WRESTLERS,
    TEAMS,
    SEGMENTS,
)
