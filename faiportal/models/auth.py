from typing import Optional
from sqlmodel import SQLModel

from faiportal.db.schema import ActorRole


class Actor(SQLModel):
    """The authenticated caller as asserted by the identity provider."""
    user_id: str
    role: ActorRole
    organization: str
    name: Optional[str] = None


class Token(SQLModel):
    access_token: str
    token_type: str = "bearer"
