import logging

from fastapi import HTTPException

from app.auth.entity.entity import AuthContext
from pkg.auth_token_client.client import TokenClient


class AuthService:
    """Verifies bearer tokens issued by the account service. Issuing tokens is not done here."""

    def __init__(self, token_client: TokenClient, logger: logging.Logger):
        self.token_client = token_client
        self.logger = logger

    async def verify_token(self, token: str) -> AuthContext:
        try:
            payload = self.token_client.decode_token(token)
        except ValueError as e:
            self.logger.info(f"Rejected bearer token: {e}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user_id = payload.get("user_id")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        return AuthContext(
            user_id=str(user_id),
            email=payload.get("email"),
            anonymous=bool(payload.get("anonymous", False)),
        )
