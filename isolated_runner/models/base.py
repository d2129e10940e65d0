"""Base model configuration for all data structures."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Model(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(frozen=True)


class WireModel(Model):
    """Model persisted to disk with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
