from abc import ABC, abstractmethod
from casegen.models.schemas import IssueLookup


class IIssueSource(ABC):
    """Interface for the issue tracker the test cases are generated from"""

    @abstractmethod
    async def get_issue(self, issue_key: str) -> IssueLookup:
        """Fetch an issue with plain-text description and acceptance criteria"""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        pass
