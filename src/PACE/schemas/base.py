from __future__ import annotations
from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    # ORM rows and frozen dataclasses both validate straight into responses
    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
    )


class StrictInput(BaseModel):
    # request bodies: unknown keys are a client error, not silently dropped
    model_config = ConfigDict(extra="forbid")
