"""Health check endpoint.

Reports database connectivity and which provider implementations are
active (``configured`` for the hosted provider, ``stub`` for the local
stand-in).
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from docchat.api.deps import Container, get_container

router = APIRouter()


async def check_db(container: Container) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with container.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health", response_model=None)
async def health(
    container: Annotated[Container, Depends(get_container)],
) -> dict[str, Any] | Response:
    """Health check endpoint.

    Returns:
        200 with service status if the database answers
        503 if it does not
    """
    db_ok, db_status = await check_db(container)

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "services": {
            "database": db_status,
            "vectorIndex": "stub" if container.index.name == "memory" else "configured",
            "llm": "stub" if container.llm.name == "stub" else "configured",
        },
    }

    if not db_ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=response_body)
    return response_body
