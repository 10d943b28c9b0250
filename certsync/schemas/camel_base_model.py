import uuid
from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class CamelCaseBaseModel(BaseModel):
    """
    Base model with camelCase field aliases and automatic serialization.

    - Input: camelCase or snake_case keys are both accepted.
    - Internal: snake_case fields are used throughout the Python codebase.
    - Output: call `model_dump(by_alias=True)` to serialize back to camelCase
    for dashboards and administration tooling.
    - ORM records can be validated directly (`from_attributes`).
    - Auto-serialization: UUIDs, Enums and datetimes become strings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_serializer("*")
    def serialize_any(self, value):
        """Global serializer for all fields with comprehensive type handling"""
        return _serialize(value)


def _serialize(value):
    if isinstance(value, uuid.UUID):
        return str(value)

    if isinstance(value, Enum):
        return value.value

    # datetime must come before date
    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]

    if isinstance(value, dict):
        return {key: _serialize(val) for key, val in value.items()}

    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)

    return value
