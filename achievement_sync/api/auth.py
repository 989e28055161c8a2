"""Bearer API keys for service callers"""
import logging
import os
import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from achievement_sync.config import parse_list

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_api_keys() -> list[str]:
    """Keys from API_KEYS, read per request so rotation needs no restart"""
    return parse_list(os.getenv("API_KEYS", ""))


def is_known_key(candidate: str, keys: list[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for key in keys:
        matched |= secrets.compare_digest(candidate.encode(), key.encode())
    return matched


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """
    Dependency guarding every /api/v1 route

    Raises:
        HTTPException: 503 when no keys are configured, 401 for an unknown key
    """
    keys = get_api_keys()
    if not keys:
        logger.error("API_KEYS is empty; refusing authenticated routes")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API authentication not configured"
        )

    if not is_known_key(credentials.credentials, keys):
        logger.warning(f"Rejected API key {credentials.credentials[:4]}***")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    return credentials.credentials
