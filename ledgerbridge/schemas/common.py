"""Shared pydantic configuration for the camelCase JSON API."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrgRequest(CamelModel):
    org_id: str


__all__ = ["CamelModel", "OrgRequest"]
