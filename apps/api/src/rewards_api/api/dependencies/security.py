import hmac

from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from rewards_api.core.settings import settings


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard gateway-only routes; open when no key is configured."""

    expected = settings.internal_api_key
    if not expected:
        return

    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("Rejected internal action call with invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def optional_internal_api_key_dependency() -> Depends:
    return Depends(require_internal_api_key)
