from abc import ABC, abstractmethod
from typing import List, Optional
from casegen.models.schemas import Generation, GenerationCreate, GenerationUpdate


class IGenerationRepository(ABC):
    """Interface for generation record persistence"""

    @abstractmethod
    async def create(self, generation: GenerationCreate) -> Generation:
        pass

    @abstractmethod
    async def get_by_id(self, generation_id: int) -> Optional[Generation]:
        pass

    @abstractmethod
    async def list_by_email(self, email: str, skip: int = 0, limit: int = 100) -> List[Generation]:
        pass

    @abstractmethod
    async def update(self, generation_id: int, update: GenerationUpdate) -> Optional[Generation]:
        pass

    @abstractmethod
    async def count_by_project(self, project_id: int) -> int:
        pass
