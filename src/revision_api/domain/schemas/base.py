from __future__ import annotations

from pydantic import BaseModel, ConfigDict

SCHEMA_CONFIG = ConfigDict(
    frozen=True,
    from_attributes=True,
    populate_by_name=True,
    extra="ignore",
)


class BaseSchema(BaseModel):
    """Base schema with shared configuration."""

    model_config = SCHEMA_CONFIG


__all__ = ["BaseSchema", "SCHEMA_CONFIG"]
