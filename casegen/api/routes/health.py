from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from casegen.config.settings import settings
from casegen.core.database import get_database
from casegen.core.dependencies import get_issue_source, get_session_store
from casegen.repositories.interfaces.issue_source import IIssueSource
from casegen.services.image_session_store import ImageSessionStore

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


@router.get("/", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.environment
    )


@router.get("/readiness")
async def readiness_check(
    db: Session = Depends(get_database),
    issue_source: IIssueSource = Depends(get_issue_source),
    store: ImageSessionStore = Depends(get_session_store),
):
    """Readiness check endpoint"""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        database = "error"

    checks = {
        "database": database,
        "openai": "ok" if settings.openai_api_key else "not_configured",
        "jira": "ok" if issue_source.is_configured() else "not_configured",
    }
    all_ok = all(value == "ok" for value in checks.values())

    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        "image_sessions": len(store),
        "timestamp": datetime.now(timezone.utc)
    }
