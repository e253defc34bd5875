from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from casegen.core.dependencies import get_current_principal, get_generation_service
from casegen.core.exceptions import (
    GenerationError,
    GenerationNotFoundError,
    InputValidationError,
    IssueSourceError,
)
from casegen.models.schemas import (
    ContentVersion,
    EditContentRequest,
    GenerateTestCasesRequest,
    GenerateTestCasesResponse,
    Generation,
    PreflightRequest,
    PreflightResponse,
    TestCaseRecord,
)
from casegen.services.export_service import XLSX_MEDIA_TYPE, build_workbook, xlsx_filename
from casegen.services.generation_service import GenerationService

logger = structlog.get_logger()

router = APIRouter(prefix="/generations", tags=["generations"])


def _not_found(e: GenerationNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/preflight", response_model=PreflightResponse)
async def preflight(
    request: PreflightRequest,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Estimate tokens and cost for an issue before generating"""
    try:
        return await service.preflight(request.issue_key)
    except InputValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except IssueSourceError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/testcases", response_model=GenerateTestCasesResponse)
async def generate_test_cases(
    request: GenerateTestCasesRequest,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Generate a test case document for a Jira issue"""
    logger.info("Generating test cases", issue_key=request.issue_key, auto_mode=request.auto_mode,
                image_session_id=request.image_session_id, principal=principal)
    try:
        return await service.generate_test_cases(
            request.issue_key,
            owner=principal,
            auto_mode=request.auto_mode,
            image_session_id=request.image_session_id,
        )
    except InputValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except IssueSourceError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except GenerationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate test cases: {e}",
        )


@router.get("/", response_model=List[Generation])
async def list_generations(
    skip: int = 0,
    limit: int = 100,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """List the caller's generations, newest first"""
    return await service.list_generations(principal, skip=skip, limit=limit)


@router.get("/{generation_id}", response_model=Generation)
async def get_generation(
    generation_id: int,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    try:
        return await service.get_generation(generation_id, principal)
    except GenerationNotFoundError as e:
        raise _not_found(e)


@router.put("/{generation_id}/content", response_model=Generation)
async def edit_content(
    generation_id: int,
    request: EditContentRequest,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Replace the document content; the previous content is kept as a version"""
    try:
        return await service.edit_content(generation_id, principal, request.content, notes=request.notes)
    except GenerationNotFoundError as e:
        raise _not_found(e)
    except InputValidationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/{generation_id}/versions", response_model=List[ContentVersion])
async def list_versions(
    generation_id: int,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    try:
        return await service.list_versions(generation_id, principal)
    except GenerationNotFoundError as e:
        raise _not_found(e)


@router.get("/{generation_id}/testcases", response_model=List[TestCaseRecord])
async def list_test_cases(
    generation_id: int,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Structured rows parsed from the current document"""
    try:
        return await service.export_rows(generation_id, principal)
    except GenerationNotFoundError as e:
        raise _not_found(e)


@router.get("/{generation_id}/download/markdown")
async def download_markdown(
    generation_id: int,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    try:
        generation = await service.get_generation(generation_id, principal)
    except GenerationNotFoundError as e:
        raise _not_found(e)
    if generation.content is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Generation has no content")
    filename = generation.filename or f"{generation.issue_key}_testcases_{generation.id}.md"
    return Response(
        content=generation.content,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{generation_id}/download/xlsx")
async def download_xlsx(
    generation_id: int,
    principal: str = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    try:
        generation = await service.get_generation(generation_id, principal)
    except GenerationNotFoundError as e:
        raise _not_found(e)
    if generation.content is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Generation has no content")
    filename = xlsx_filename(generation.issue_key, generation.id)
    return Response(
        content=build_workbook(generation.content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
