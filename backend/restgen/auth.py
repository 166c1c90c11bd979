import logging
import os
import secrets
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from restgen.config import Settings, settings as default_settings
from restgen.errors import AuthenticationError, RestgenError

logger = logging.getLogger(__name__)

ENV_SECRET = "JWT_SECRET"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        return False


class Identity(BaseModel):
    id: int | str
    roles: list[str]
    expires_at: datetime


def resolve_secret(config: Settings) -> str:
    """Configured secret, then $JWT_SECRET, then the secret file, then a random one."""
    if config.jwt_secret:
        return config.jwt_secret
    env_secret = os.environ.get(ENV_SECRET)
    if env_secret:
        return env_secret
    path = Path(config.jwt_secret_file)
    if path.is_file():
        file_secret = path.read_text().strip()
        if file_secret:
            return file_secret
    logger.warning(
        "No JWT secret configured; generated a random one. "
        "Tokens will not survive a restart. Set %s or RESTGEN_JWT_SECRET.",
        ENV_SECRET,
    )
    return secrets.token_urlsafe(64)


class TokenService:
    """Issues and verifies HS256 bearer tokens carrying a subject and roles."""

    def __init__(
        self,
        config: Settings | None = None,
        secret: str | None = None,
        algorithm: str = "HS256",
    ):
        self._config = config or default_settings
        self._secret = secret
        self._lock = threading.Lock()
        self.algorithm = algorithm
        self.ttl = timedelta(hours=self._config.token_ttl_hours)

    @property
    def secret(self) -> str:
        if self._secret is None:
            with self._lock:
                if self._secret is None:
                    self._secret = resolve_secret(self._config)
        return self._secret

    def issue(self, subject: int | str, roles: list[str]) -> str:
        expire = datetime.now(UTC) + self.ttl
        try:
            return jwt.encode(
                {"sub": str(subject), "roles": list(roles), "exp": expire},
                self.secret,
                algorithm=self.algorithm,
            )
        except JWTError as e:
            logger.error("Token signing failed: %s", e)
            raise RestgenError("Token generation failed") from e

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise AuthenticationError("Token expired") from None
        except JWTError:
            raise AuthenticationError("Invalid token") from None

        subject = payload.get("sub")
        roles = payload.get("roles")
        exp = payload.get("exp")
        if not subject or not isinstance(roles, list) or exp is None:
            raise AuthenticationError("Invalid token")
        return Identity(
            id=int(subject) if subject.isdigit() else subject,
            roles=[str(r) for r in roles],
            expires_at=datetime.fromtimestamp(exp, UTC),
        )
