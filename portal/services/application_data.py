"""
Type-specific application payloads.

Each application type has its own schema class; ``parse_application_data``
selects it by the ``application_type`` discriminant, drops unknown keys,
and enforces that type's required fields.

    fisherman  marina; previous_license_number on renewal
    boat       boat_number on renewal
    vehicle    plate_number
    trade      optional free fields
    entry      optional free fields
    other      marina; previous_license_number on renewal

Incoming keys may be camelCase (web form) or snake_case (API clients).
"""

import re
from dataclasses import asdict, dataclass, fields

from portal.core.exceptions import ValidationError

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


@dataclass
class ApplicationData:
    """Fields common to every type: optional owner information."""

    owner_name: str | None = None
    owner_national_id: str | None = None

    required_fields: tuple = ()
    renewal_required_fields: tuple = ()

    def validate(self, is_renewal: bool) -> None:
        missing = [f for f in self.required_fields if not getattr(self, f)]
        if is_renewal:
            missing += [f for f in self.renewal_required_fields if not getattr(self, f)]
        if missing:
            raise ValidationError(
                "Missing required fields: " + ", ".join(missing),
                details={f: "required" for f in missing},
            )

    def to_dict(self) -> dict:
        skip = {"required_fields", "renewal_required_fields"}
        return {k: v for k, v in asdict(self).items() if k not in skip and v not in (None, "")}


@dataclass
class FishermanData(ApplicationData):
    marina: str | None = None
    union_card_number: str | None = None
    previous_license_number: str | None = None

    required_fields: tuple = ("marina",)
    renewal_required_fields: tuple = ("previous_license_number",)


@dataclass
class BoatData(ApplicationData):
    boat_number: str | None = None
    boat_registration: str | None = None
    boat_length: str | None = None
    engine_power: str | None = None
    previous_boat_number: str | None = None
    marina: str | None = None

    renewal_required_fields: tuple = ("boat_number",)


@dataclass
class VehicleData(ApplicationData):
    plate_number: str | None = None
    vehicle_type: str | None = None
    vehicle_year: str | None = None
    capacity: str | None = None
    motor_number: str | None = None
    chassis_number: str | None = None

    required_fields: tuple = ("plate_number",)


@dataclass
class TradeData(ApplicationData):
    trade_name: str | None = None
    trade_address: str | None = None
    previous_license_number: str | None = None


@dataclass
class EntryData(ApplicationData):
    employer_name: str | None = None
    work_place: str | None = None
    previous_license_number: str | None = None


@dataclass
class OtherData(ApplicationData):
    marina: str | None = None
    previous_license_number: str | None = None
    description: str | None = None

    required_fields: tuple = ("marina",)
    renewal_required_fields: tuple = ("previous_license_number",)


DATA_SCHEMAS = {
    "fisherman": FishermanData,
    "boat": BoatData,
    "vehicle": VehicleData,
    "trade": TradeData,
    "entry": EntryData,
    "other": OtherData,
}


def parse_application_data(application_type: str, raw: dict | None, is_renewal: bool = False) -> ApplicationData:
    """Build and validate the schema instance for ``application_type``."""
    schema = DATA_SCHEMAS.get(application_type)
    if schema is None:
        raise ValidationError(f"Unknown application type: {application_type}")

    allowed = {f.name for f in fields(schema)} - {"required_fields", "renewal_required_fields"}
    values = {}
    for key, value in (raw or {}).items():
        name = _snake(key)
        if name in allowed and value not in (None, ""):
            values[name] = str(value).strip()

    instance = schema(**values)
    instance.validate(is_renewal)
    return instance
