"""
Request dependencies for FastAPI.

Authentication (tokens are issued by the auth service; we only verify
them) and the admission components built from settings.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from backend.app.core.config import settings
from backend.app.core.jwt import decode_access_token
from backend.app.domain.admission.trip_admission import TripAdmissionEngine
from backend.app.services.consent_ledger import ConsentLedger

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Validates the token signature and expiry and requires a user_id claim.

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if the token is invalid
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_consent_ledger() -> ConsentLedger:
    return ConsentLedger(settings.tracking_config())


def get_admission_engine(ledger: ConsentLedger = Depends(get_consent_ledger)) -> TripAdmissionEngine:
    return TripAdmissionEngine(settings.tracking_config(), ledger=ledger)
