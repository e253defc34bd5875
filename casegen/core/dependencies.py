from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from casegen.config.settings import settings
from casegen.core.database import get_database
from casegen.repositories.interfaces.generation_repository import IGenerationRepository
from casegen.repositories.interfaces.issue_source import IIssueSource
from casegen.repositories.interfaces.project_repository import IProjectRepository
from casegen.repositories.implementations.jira_issue_source import AtlassianJiraService
from casegen.repositories.implementations.sql_generation_repository import SQLGenerationRepository
from casegen.repositories.implementations.sql_project_repository import SQLProjectRepository
from casegen.services.generation_client import GenerationClient
from casegen.services.generation_service import GenerationService
from casegen.services.image_processing import ImageProcessor
from casegen.services.image_session_store import ImageSessionStore


class Container:
    """Dependency injection container"""

    def __init__(self):
        self._issue_source: Optional[IIssueSource] = None
        self._generation_client: Optional[GenerationClient] = None
        self._session_store: Optional[ImageSessionStore] = None
        self._image_processor: Optional[ImageProcessor] = None

    def generation_repository(self, db: Session) -> IGenerationRepository:
        return SQLGenerationRepository(db)

    def project_repository(self, db: Session) -> IProjectRepository:
        return SQLProjectRepository(db)

    def issue_source(self) -> IIssueSource:
        """Get issue source instance (singleton)"""
        if self._issue_source is None:
            self._issue_source = AtlassianJiraService()
        return self._issue_source

    def generation_client(self) -> GenerationClient:
        """Get OpenAI generation client (singleton)"""
        if self._generation_client is None:
            self._generation_client = GenerationClient()
        return self._generation_client

    def session_store(self) -> ImageSessionStore:
        """Get image session store (singleton, owns its timers)"""
        if self._session_store is None:
            self._session_store = ImageSessionStore(
                ttl=timedelta(minutes=settings.image_session_ttl_minutes),
                sweep_interval=timedelta(minutes=settings.image_session_sweep_interval_minutes),
            )
        return self._session_store

    def image_processor(self) -> ImageProcessor:
        if self._image_processor is None:
            self._image_processor = ImageProcessor()
        return self._image_processor

    def dispose(self) -> None:
        if self._session_store is not None:
            self._session_store.dispose()
            self._session_store = None


# Global container instance
container = Container()


# Dependency providers for FastAPI
def get_current_principal(x_user_email: Optional[str] = Header(None)) -> str:
    """Opaque identity of the caller, used only for ownership checks"""
    principal = (x_user_email or "").strip()
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Email header required")
    return principal


def get_issue_source() -> IIssueSource:
    return container.issue_source()


def get_generation_client() -> GenerationClient:
    return container.generation_client()


def get_session_store() -> ImageSessionStore:
    return container.session_store()


def get_image_processor() -> ImageProcessor:
    return container.image_processor()


def get_generation_service(
    db: Session = Depends(get_database),
    issue_source: IIssueSource = Depends(get_issue_source),
    generation_client: GenerationClient = Depends(get_generation_client),
    session_store: ImageSessionStore = Depends(get_session_store),
) -> GenerationService:
    """FastAPI dependency for generation service"""
    return GenerationService(
        generation_repository=container.generation_repository(db),
        project_repository=container.project_repository(db),
        issue_source=issue_source,
        generation_client=generation_client,
        session_store=session_store,
    )


def get_project_repository(db: Session = Depends(get_database)) -> IProjectRepository:
    return container.project_repository(db)
