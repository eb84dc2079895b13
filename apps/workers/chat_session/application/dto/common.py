from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base Pydantic model configured for camelCase I/O (populate_by_name + alias_generator).
    Stored JSON uses the camelCase aliases; Python code uses snake_case names.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel
    )
