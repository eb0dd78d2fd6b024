"""Health endpoint."""

from typing import Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examdesk.core.logging import get_logger
from examdesk.db.session import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded"] = "ok"
    database: Literal["ok", "down"] = "ok"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
)
async def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    """Process is alive; reports database reachability."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Health check database probe failed: {e}")
        return HealthResponse(status="degraded", database="down")
    return HealthResponse()
