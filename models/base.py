"""Base model with camelCase serialization for API output."""

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base class for every API-facing model; serializes as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BackendRecord(BaseModel):
    """Base class for records read from backend collections.

    Backend payloads are snake_case and carry more fields than the resolver
    needs, so unknown keys are kept rather than rejected.  A ``null`` on an
    optional field means "not set" and falls back to the field default.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _null_means_default(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        fields = cls.model_fields
        return {
            key: value
            for key, value in data.items()
            if value is not None or key not in fields or fields[key].is_required()
        }
