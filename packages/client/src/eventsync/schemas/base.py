"""Base models for inbound wire payloads.

Learn: The realtime service speaks camelCase (`firstName`, `createdAt`).
WireModel maps those onto snake_case attributes with an alias generator,
so Python code reads `entry.user.first_name` while validation accepts
exactly what the server sends. Unknown fields are ignored: the server
may add fields at any time and that must not break old clients.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RestModel(BaseModel):
    """REST payloads are already snake_case."""

    model_config = ConfigDict(extra="ignore")
