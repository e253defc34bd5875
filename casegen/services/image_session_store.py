from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

from casegen.core.exceptions import SessionNotFoundError
from casegen.core.scheduling import AsyncioScheduler, ScheduledTask, Scheduler
from casegen.models.schemas import ImageDescriptor, ImageSession, ImageSessionSummary

logger = structlog.get_logger()

DEFAULT_TTL = timedelta(minutes=30)
DEFAULT_SWEEP_INTERVAL = timedelta(minutes=10)


class ImageSessionStore:
    """Short-lived, owner-scoped groups of uploaded images.

    Every session gets a one-shot expiry task when created (rescheduled on
    extend); ``start()`` adds a periodic sweep that catches anything a
    missed expiry task left behind. Cleanup deletes the backing files.

    Not shared across processes and not persisted: a restart forgets all
    sessions. Lookups that find nothing return None; callers on the
    generation path treat that as "no images".
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        if ttl.total_seconds() <= 0:
            raise ValueError("Session TTL must be positive")
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self.scheduler = scheduler or AsyncioScheduler()
        self._sessions: Dict[str, ImageSession] = {}
        self._expiry_tasks: Dict[str, ScheduledTask] = {}
        self._sweeper: Optional[ScheduledTask] = None

    def __len__(self) -> int:
        return len(self._sessions)

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = self.scheduler.call_every(self.sweep_interval.total_seconds(), self.sweep_expired)
            logger.info("Image session sweeper started", interval_seconds=self.sweep_interval.total_seconds())

    def dispose(self) -> None:
        """Stop all timers and clean up every session."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        for session_id in list(self._sessions):
            self.cleanup_session(session_id)
        logger.info("Image session store disposed")

    # -- operations ----------------------------------------------------

    @staticmethod
    def generate_session_id() -> str:
        return f"img_session_{uuid4().hex}"

    def create_session(self, owner: str, images: Sequence[ImageDescriptor]) -> str:
        session_id = self.generate_session_id()
        created_at = self.scheduler.now()
        self._sessions[session_id] = ImageSession(
            id=session_id,
            owner=owner,
            images=list(images),
            created_at=created_at,
            expires_at=created_at + self.ttl,
        )
        self._schedule_expiry(session_id)
        logger.info("Created image session", session_id=session_id, owner=owner, images=len(images))
        return session_id

    def get_session(self, session_id: str, owner: Optional[str] = None) -> Optional[ImageSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            self.cleanup_session(session_id)
            return None
        # Foreign sessions look absent so their existence is not leaked
        if owner is not None and session.owner != owner:
            return None
        return session

    def require_session(self, session_id: str, owner: Optional[str] = None) -> ImageSession:
        session = self.get_session(session_id, owner)
        if session is None:
            raise SessionNotFoundError(f"Image session {session_id} not found or expired")
        return session

    def extend_session(self, session_id: str, owner: str) -> bool:
        session = self.get_session(session_id, owner)
        if session is None:
            return False
        session.expires_at = self.scheduler.now() + self.ttl
        self._schedule_expiry(session_id)
        logger.info("Extended image session", session_id=session_id, expires_at=session.expires_at.isoformat())
        return True

    def cleanup_session(self, session_id: str) -> None:
        task = self._expiry_tasks.pop(session_id, None)
        if task is not None:
            task.cancel()
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        for image in session.images:
            path = Path(image.storage_path)
            try:
                if path.exists():
                    path.unlink()
                    logger.info("Cleaned up session image", session_id=session_id, file=image.stored_name)
            except OSError as e:
                logger.warning("Failed to clean up session image",
                               session_id=session_id, file=image.stored_name, error=str(e))
        logger.info("Cleaned up image session", session_id=session_id)

    def list_sessions(self, owner: str) -> List[ImageSessionSummary]:
        return [
            ImageSessionSummary(
                session_id=session.id,
                image_count=len(session.images),
                created_at=session.created_at,
                expires_at=session.expires_at,
            )
            for session in self._sessions.values()
            if session.owner == owner and not self._is_expired(session)
        ]

    def sweep_expired(self) -> int:
        expired = [sid for sid, session in self._sessions.items() if self._is_expired(session)]
        for session_id in expired:
            self.cleanup_session(session_id)
        if expired:
            logger.info("Cleaned up expired image sessions", count=len(expired))
        return len(expired)

    # -- internals -----------------------------------------------------

    def _is_expired(self, session: ImageSession) -> bool:
        return self.scheduler.now() >= session.expires_at

    def _schedule_expiry(self, session_id: str) -> None:
        previous = self._expiry_tasks.pop(session_id, None)
        if previous is not None:
            previous.cancel()
        session = self._sessions[session_id]
        delay = (session.expires_at - self.scheduler.now()).total_seconds()
        self._expiry_tasks[session_id] = self.scheduler.call_later(delay, lambda: self._expire(session_id))

    def _expire(self, session_id: str) -> None:
        self._expiry_tasks.pop(session_id, None)
        session = self._sessions.get(session_id)
        if session is None:
            return
        if self._is_expired(session):
            self.cleanup_session(session_id)
        else:
            # Loop timers run on a monotonic clock and may fire a hair early
            self._schedule_expiry(session_id)
