from typing import Annotated, Optional
import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from application.container import ServiceContainer
from domain.errors import AuthenticationError

logger = structlog.get_logger(__name__)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="service not ready")
    return container


async def get_current_uid(
    container: Annotated[ServiceContainer, Depends(get_container)],
    authorization: Optional[str] = Header(default=None),
) -> str:
    """Authenticate the bearer token and return the caller's uid"""

    try:
        uid = await container.auth.get_uid(authorization)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    structlog.contextvars.bind_contextvars(uid=uid)
    return uid


async def enforce_rate_limit(
    uid: Annotated[str, Depends(get_current_uid)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> str:
    """Consume one admission token for ``uid`` or reject with 429"""

    if await container.rate_limiter.allow(uid):
        return uid

    retry_after = await container.rate_limiter.retry_after(uid)
    container.metrics.increment_counter("http.rate_limited")
    logger.info("Rate limit exceeded", retry_after=retry_after)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={"error": "rate limit exceeded", "retry_after": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]
CurrentUid = Annotated[str, Depends(get_current_uid)]
RateLimitedUid = Annotated[str, Depends(enforce_rate_limit)]
