# backend/app/schemas/user.py
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# What the client needs about its user: never the webauthn handle or credentials
class UserSnapshot(CamelModel):
    id: str
    email: str
    key_derivation_salt: str


class TokenPayload(BaseModel):
    sub: Optional[str] = None
    email: Optional[str] = None
