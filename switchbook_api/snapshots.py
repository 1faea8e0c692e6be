"""
Typed snapshots of master switch data stored on edit suggestions.

previousData and newData are serialized SwitchSnapshot records tagged with
schemaVersion so the stored shape can evolve without silently breaking old
rows.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .models import SWITCH_SPEC_FIELDS, to_camel

SNAPSHOT_SCHEMA_VERSION = 1

class SwitchSnapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    name: str
    chinese_name: Optional[str] = None
    type: Optional[str] = None
    technology: Optional[str] = None
    manufacturer: Optional[str] = None
    compatibility: Optional[str] = None
    initial_force: Optional[float] = None
    actuation_force: Optional[float] = None
    tactile_force: Optional[float] = None
    tactile_position: Optional[float] = None
    bottom_out_force: Optional[float] = None
    pre_travel: Optional[float] = None
    bottom_out: Optional[float] = None
    spring_weight: Optional[str] = None
    spring_length: Optional[str] = None
    progressive_spring: Optional[bool] = None
    double_stage: Optional[bool] = None
    click_type: Optional[str] = None
    top_housing: Optional[str] = None
    bottom_housing: Optional[str] = None
    stem: Optional[str] = None
    top_housing_color: Optional[str] = None
    bottom_housing_color: Optional[str] = None
    stem_color: Optional[str] = None
    stem_shape: Optional[str] = None
    markings: Optional[str] = None
    magnet_orientation: Optional[str] = None
    magnet_position: Optional[str] = None
    magnet_polarity: Optional[str] = None
    initial_magnetic_flux: Optional[float] = None
    bottom_out_magnetic_flux: Optional[float] = None
    pcb_thickness: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator('*', mode='before')
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_model(cls, row) -> 'SwitchSnapshot':
        """Snapshot the descriptive fields of a Switch or MasterSwitch row."""
        return cls(**{field: getattr(row, field) for field in SWITCH_SPEC_FIELDS})

    @classmethod
    def from_stored(cls, data: Dict[str, Any]) -> 'SwitchSnapshot':
        """
        Load a snapshot from a stored JSON blob.

        Raises:
            ValueError: when the blob has an unknown schemaVersion or does not parse
        """
        version = data.get('schemaVersion', SNAPSHOT_SCHEMA_VERSION)
        if version != SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported snapshot schema version: {version}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Stored snapshot is invalid: {e}") from e

    def values(self, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        """Attribute values keyed by snake_case name, optionally restricted to fields."""
        dumped = self.model_dump(exclude={'schema_version'})
        if fields is None:
            return dumped
        return {field: dumped[field] for field in fields if field in dumped}

    def to_stored(self, **extra) -> Dict[str, Any]:
        """camelCase JSON for the database, with any extra keys appended."""
        return {**self.model_dump(by_alias=True), **extra}
