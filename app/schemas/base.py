"""
Shared pydantic bases for the bin optimization schemas.

Views built from ORM rows derive from BaseResponseSchema;
everything the services compute derives from BaseResultSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Schema built from an ORM row. Attribute access is enabled so
    model_validate(row) works as well as explicit constructors.
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseResultSchema(BaseModel):
    """
    Computed value object returned by a service.

    Enum fields hold their plain values, so results compare against
    strings and dump to JSON without conversion.
    """
    model_config = ConfigDict(
        use_enum_values=True,
    )
