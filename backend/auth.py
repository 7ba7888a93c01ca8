"""Admin tokens and participant password hashing."""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from werkzeug.security import generate_password_hash, check_password_hash

import config

logger = logging.getLogger(__name__)


class AdminAuth:
    def __init__(self, password: str = None, secret: str = None,
                 algorithm: str = None, expiration_hours: int = None):
        self.password = password if password is not None else config.ADMIN_PASSWORD
        self.secret = secret or config.JWT_SECRET
        self.algorithm = algorithm or config.JWT_ALGORITHM
        self.expiration_hours = expiration_hours or config.JWT_EXPIRATION_HOURS

    def login(self, password: str) -> Optional[str]:
        """Return a signed admin token, or None when the password is wrong."""
        if not password or not hmac.compare_digest(password.encode(), self.password.encode()):
            logger.warning("Rejected admin login")
            return None
        now = datetime.now(timezone.utc)
        payload = {
            "role": "admin",
            "iat": now,
            "exp": now + timedelta(hours=self.expiration_hours),
        }
        return pyjwt.encode(payload, self.secret, algorithm=self.algorithm)

    def validate(self, token: str) -> bool:
        if not token:
            return False
        try:
            payload = pyjwt.decode(token, self.secret, algorithms=[self.algorithm])
        except pyjwt.ExpiredSignatureError:
            return False
        except pyjwt.InvalidTokenError:
            return False
        return payload.get("role") == "admin"


class CredentialHasher:
    def hash(self, plaintext: str) -> str:
        return generate_password_hash(plaintext)

    def compare(self, plaintext: str, digest: str) -> bool:
        if not plaintext or not digest:
            return False
        return check_password_hash(digest, plaintext)


admin_auth = AdminAuth()
credential_hasher = CredentialHasher()
