from typing import Optional

from pydantic import BaseModel


class AuthContext(BaseModel):
    """Identity established from a verified bearer token."""
    user_id: str
    email: Optional[str] = None
    anonymous: bool = False
