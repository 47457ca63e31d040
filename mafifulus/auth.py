import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

load_dotenv()

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-key-change-in-prod")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))
ALGORITHM = "HS256"

bearer = HTTPBearer(auto_error=False)


def create_token(user: Dict[str, Any]) -> str:
    payload = {
        "userId": user["id"],
        "phone": user["phone_number"],
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[Dict[str, Any]]:
    """Token payload when a bearer token is sent, ``None`` for anonymous calls."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def current_user(payload: Optional[Dict[str, Any]] = Depends(optional_user)) -> Dict[str, Any]:
    if payload is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return payload
