from typing import Optional
from datetime import datetime, timedelta, timezone

import jwt
from loguru import logger

from faiportal.core.config import settings
from faiportal.db.schema import ActorRole
from faiportal.models.auth import Actor, Token


class IdentityService:
    """
    Resolves the acting role and organization from a bearer token.

    Tokens are minted by the external identity provider; the portal only
    verifies the signature and trusts the role/org claims. ``issue_token``
    exists for local development and tests.
    """
    ALGORITHM = "HS256"
    TOKEN_ROLES = (ActorRole.SUPPLIER, ActorRole.IQA)

    def issue_token(self, actor: Actor, expires_delta: Optional[timedelta] = None) -> Token:
        expires_delta = expires_delta or timedelta(
            minutes=settings.access_token_expire_minutes)
        to_encode = {
            "sub": actor.user_id,
            "role": actor.role.value,
            "org": actor.organization,
            "name": actor.name,
            "exp": datetime.now(timezone.utc) + expires_delta,
            "type": "access"
        }
        return Token(access_token=jwt.encode(to_encode, settings.secret_key, algorithm=self.ALGORITHM))

    def verify_access_token(self, token: str) -> Optional[Actor]:
        try:
            payload = jwt.decode(token, settings.secret_key,
                                 algorithms=[self.ALGORITHM])
        except jwt.PyJWTError:
            return None

        user_id = payload.get("sub")
        organization = payload.get("org")
        if not user_id or not organization or payload.get("type") != "access":
            return None

        try:
            role = ActorRole(payload.get("role"))
        except ValueError:
            return None

        if role not in self.TOKEN_ROLES:
            logger.warning(f"Rejected token for {user_id}: role {role.value} cannot be delegated.")
            return None

        return Actor(
            user_id=user_id,
            role=role,
            organization=organization,
            name=payload.get("name"),
        )
