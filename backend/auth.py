"""Identity token verification.

Tokens are issued by the external identity provider; this service only
verifies them and reads the account identifier from the ``sub`` claim.
"""
from jose import JWTError, jwt
from typing import Optional, Dict
import os

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None

def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        options = {"verify_aud": JWT_AUDIENCE is not None}
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            options=options,
        )
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload

def get_account_id(payload: Dict) -> str:
    """Return the verified account identifier from decoded claims."""
    return str(payload["sub"])

def is_admin(payload: Dict) -> bool:
    """Check whether the token carries the operator role."""
    return payload.get("role") == "admin"
