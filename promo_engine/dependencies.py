# promo_engine/dependencies.py
import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from promo_engine import config
from promo_engine.database import SessionLocal, ReadSessionLocal
from promo_engine.services.engine import PromoEngine

logger = logging.getLogger(__name__)

# Security scheme
bearer = HTTPBearer(description="Google ID Token (JWT)")

_engine: PromoEngine | None = None


def get_verified_email(credentials: HTTPAuthorizationCredentials = Depends(bearer)) -> str:
    """The verified e-mail doubles as the user id recorded on redemptions."""
    token = credentials.credentials

    client_id = config.GOOGLE_CLIENT_ID
    if not client_id:
        logger.error("GOOGLE_CLIENT_ID is not set in environment variables")
        raise HTTPException(status_code=500, detail="Server Configuration Error")

    try:
        idinfo = id_token.verify_oauth2_token(
            token, google_requests.Request(), client_id
        )
    except ValueError as e:
        # e.g. "Token expired", "Audience mismatch"
        logger.info("Token validation failed: %s", e)
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")

    return idinfo["email"].lower()


def require_admin(email: str = Depends(get_verified_email)) -> str:
    if email not in config.ADMIN_EMAILS:
        raise HTTPException(status_code=403, detail="Admin access required")
    return email


def get_promo_engine() -> PromoEngine:
    global _engine
    if _engine is None:
        _engine = PromoEngine(SessionLocal, read_session_factory=ReadSessionLocal)
    return _engine
