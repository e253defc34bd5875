from abc import ABC, abstractmethod
from typing import List, Optional
from casegen.models.schemas import Project


class IProjectRepository(ABC):
    """Interface for project bookkeeping"""

    @abstractmethod
    async def get_by_key(self, project_key: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def find_or_create(self, project_key: str, created_by: str) -> Project:
        """Return the project for the key, creating it on first use and touching last_generated_at"""
        pass

    @abstractmethod
    async def set_total_generations(self, project_id: int, total: int) -> Optional[Project]:
        pass

    @abstractmethod
    async def get_all(self, skip: int = 0, limit: int = 100) -> List[Project]:
        pass
