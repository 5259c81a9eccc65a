from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt


@dataclass
class TokenPayload:
    user_id: str
    email: str | None = None
    anonymous: bool = False


class TokenClient:
    def __init__(self, secret_key: str, leeway_seconds: int = 10, access_token_ttl: timedelta = timedelta(hours=24)):
        self.secret_key = secret_key
        # Allow small clock skew when decoding tokens
        self.leeway_seconds = leeway_seconds
        self.access_token_ttl = access_token_ttl

    def create_access_token(self, payload: TokenPayload) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {
            "user_id": str(payload.user_id),
            "email": payload.email,
            "anonymous": payload.anonymous,
            "iat": int(now.timestamp()),
            "exp": now + self.access_token_ttl,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm="HS256")

    def decode_token(self, token: str) -> dict:
        """Decode and verify a token"""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=["HS256"],
                leeway=self.leeway_seconds,
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token has expired")
        except jwt.InvalidTokenError:
            raise ValueError("Invalid token")
