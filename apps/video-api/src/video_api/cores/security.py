from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from authlib.jose import jwt
from authlib.jose.errors import JoseError

from video_api.cores.config import settings
from video_api.cores.errors import Unauthorized

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def can_manage(self, owner_id: str) -> bool:
        return self.is_admin or self.user_id == owner_id


def create_access_token(user_id: str, role: str = "user", expires_in: timedelta = timedelta(days=7)) -> str:
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    token = jwt.encode(
        header={"alg": "HS256"},
        payload=payload,
        key=settings.JWT_SECRET_KEY
    )
    return token.decode("utf-8")


def decode_access_token(token: str) -> Principal:
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY)
        claims.validate()
    except (JoseError, ValueError) as e:
        raise Unauthorized("Invalid or expired token", cause=e)
    user_id = claims.get("sub")
    if not user_id:
        raise Unauthorized("Token has no subject")
    return Principal(user_id=str(user_id), role=claims.get("role") or "user")
