"""Status endpoint."""

from fastapi import APIRouter, Response, status

router = APIRouter()


@router.get("/status", status_code=status.HTTP_204_NO_CONTENT)
async def status_check() -> Response:
    """Liveness probe - no auth required."""
    return Response(status_code=status.HTTP_204_NO_CONTENT)
