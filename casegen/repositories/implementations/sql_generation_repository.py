from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from casegen.repositories.interfaces.generation_repository import IGenerationRepository
from casegen.models.database import GenerationModel
from casegen.models.schemas import Generation, GenerationCreate, GenerationUpdate

# Nested models stored in JSON columns need JSON-safe dumps (datetimes as strings)
_JSON_FIELDS = {"versions", "token_usage"}


class SQLGenerationRepository(IGenerationRepository):
    """SQLAlchemy implementation of generation repository"""

    def __init__(self, db: Session):
        self.db = db

    def _get_model(self, generation_id: int) -> Optional[GenerationModel]:
        return self.db.query(GenerationModel).filter(GenerationModel.id == generation_id).first()

    async def create(self, generation: GenerationCreate) -> Generation:
        """Create a new generation record"""
        db_generation = GenerationModel(**generation.model_dump(), versions=[], current_version=1)
        self.db.add(db_generation)
        self.db.commit()
        self.db.refresh(db_generation)
        return Generation.model_validate(db_generation)

    async def get_by_id(self, generation_id: int) -> Optional[Generation]:
        """Get generation by ID"""
        db_generation = self._get_model(generation_id)
        if db_generation:
            return Generation.model_validate(db_generation)
        return None

    async def list_by_email(self, email: str, skip: int = 0, limit: int = 100) -> List[Generation]:
        """Newest first"""
        db_generations = (
            self.db.query(GenerationModel)
            .filter(GenerationModel.email == email)
            .order_by(GenerationModel.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return [Generation.model_validate(g) for g in db_generations]

    async def update(self, generation_id: int, update: GenerationUpdate) -> Optional[Generation]:
        """Update fields explicitly set on the update model"""
        db_generation = self._get_model(generation_id)
        if not db_generation:
            return None

        update_data: Dict[str, Any] = update.model_dump(exclude_unset=True, exclude=_JSON_FIELDS)
        update_data.update(update.model_dump(mode="json", exclude_unset=True, include=_JSON_FIELDS))
        for field, value in update_data.items():
            setattr(db_generation, field, value)

        self.db.commit()
        self.db.refresh(db_generation)
        return Generation.model_validate(db_generation)

    async def count_by_project(self, project_id: int) -> int:
        return self.db.query(GenerationModel).filter(GenerationModel.project_id == project_id).count()
