from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from casegen.repositories.interfaces.project_repository import IProjectRepository
from casegen.models.database import ProjectModel
from casegen.models.schemas import Project


class SQLProjectRepository(IProjectRepository):
    """SQLAlchemy implementation of project repository"""

    def __init__(self, db: Session):
        self.db = db

    def _get_model(self, project_key: str) -> Optional[ProjectModel]:
        return self.db.query(ProjectModel).filter(ProjectModel.project_key == project_key.upper()).first()

    async def get_by_key(self, project_key: str) -> Optional[Project]:
        db_project = self._get_model(project_key)
        return Project.model_validate(db_project) if db_project else None

    async def find_or_create(self, project_key: str, created_by: str) -> Project:
        if not project_key:
            raise ValueError("project_key is required")
        now = datetime.now(timezone.utc)
        db_project = self._get_model(project_key)
        if db_project is None:
            db_project = ProjectModel(
                project_key=project_key.upper(),
                created_by=created_by,
                first_generated_at=now,
                last_generated_at=now,
                total_generations=0,
            )
            self.db.add(db_project)
        else:
            db_project.last_generated_at = now
        try:
            self.db.commit()
        except SQLAlchemyError:
            # A concurrent request may have inserted the same key first
            self.db.rollback()
            existing = self._get_model(project_key)
            if existing is None:
                raise
            return Project.model_validate(existing)
        self.db.refresh(db_project)
        return Project.model_validate(db_project)

    async def set_total_generations(self, project_id: int, total: int) -> Optional[Project]:
        db_project = self.db.query(ProjectModel).filter(ProjectModel.id == project_id).first()
        if not db_project:
            return None
        db_project.total_generations = total
        self.db.commit()
        self.db.refresh(db_project)
        return Project.model_validate(db_project)

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[Project]:
        db_projects = (
            self.db.query(ProjectModel)
            .order_by(ProjectModel.last_generated_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return [Project.model_validate(p) for p in db_projects]
