from typing import List

from fastapi import APIRouter, Depends

from casegen.core.dependencies import get_current_principal, get_project_repository
from casegen.models.schemas import Project
from casegen.repositories.interfaces.project_repository import IProjectRepository

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("/", response_model=List[Project])
async def list_projects(
    skip: int = 0,
    limit: int = 100,
    principal: str = Depends(get_current_principal),
    repository: IProjectRepository = Depends(get_project_repository),
):
    """Projects seen so far, most recently generated first"""
    return await repository.get_all(skip=skip, limit=limit)
