from pathlib import Path
from typing import List

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from casegen.config.settings import settings
from casegen.core.dependencies import get_current_principal, get_image_processor, get_session_store
from casegen.core.exceptions import ImageProcessingError, InputValidationError, SessionNotFoundError
from casegen.models.schemas import ImageDescriptor, ImageSession, ImageSessionCreatedResponse, ImageSessionSummary
from casegen.services.image_processing import ImageProcessor
from casegen.services.image_session_store import ImageSessionStore

logger = structlog.get_logger()

router = APIRouter(prefix="/images", tags=["images"])


@router.post("/sessions", response_model=ImageSessionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def upload_images(
    images: List[UploadFile] = File(...),
    principal: str = Depends(get_current_principal),
    processor: ImageProcessor = Depends(get_image_processor),
    store: ImageSessionStore = Depends(get_session_store),
):
    """Upload screenshots and group them into a short-lived session"""
    if len(images) > settings.max_upload_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.max_upload_files} images per upload",
        )

    processed: List[ImageDescriptor] = []
    try:
        for upload in images:
            data = await upload.read()
            processed.append(await processor.process_upload(upload.filename or "image", upload.content_type, data))
    except (InputValidationError, ImageProcessingError) as e:
        # Nothing is kept from a rejected batch
        for image in processed:
            try:
                Path(image.storage_path).unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("Failed to remove rejected upload", file=image.stored_name, error=str(cleanup_error))
        logger.warning("Image upload rejected", principal=principal, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    session_id = store.create_session(principal, processed)
    session = store.require_session(session_id, principal)
    return ImageSessionCreatedResponse(session_id=session_id, images=session.images, expires_at=session.expires_at)


@router.get("/sessions", response_model=List[ImageSessionSummary])
async def list_sessions(
    principal: str = Depends(get_current_principal),
    store: ImageSessionStore = Depends(get_session_store),
):
    return store.list_sessions(principal)


@router.get("/sessions/{session_id}", response_model=ImageSession)
async def get_session(
    session_id: str,
    principal: str = Depends(get_current_principal),
    store: ImageSessionStore = Depends(get_session_store),
):
    try:
        return store.require_session(session_id, principal)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/sessions/{session_id}/extend", response_model=ImageSessionSummary)
async def extend_session(
    session_id: str,
    principal: str = Depends(get_current_principal),
    store: ImageSessionStore = Depends(get_session_store),
):
    """Push the session expiry back by one full TTL"""
    if not store.extend_session(session_id, principal):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Image session {session_id} not found or expired")
    session = store.require_session(session_id, principal)
    return ImageSessionSummary(
        session_id=session.id,
        image_count=len(session.images),
        created_at=session.created_at,
        expires_at=session.expires_at,
    )


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    principal: str = Depends(get_current_principal),
    store: ImageSessionStore = Depends(get_session_store),
):
    if store.get_session(session_id, principal) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Image session {session_id} not found or expired")
    store.cleanup_session(session_id)
    return {"message": "Image session deleted successfully"}
