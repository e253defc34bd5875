from datetime import datetime, timezone
from typing import List, Optional

import structlog

from casegen.models.schemas import ContentVersion, Generation

logger = structlog.get_logger()


def record_edit(
    generation: Generation,
    new_content: str,
    editor: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Generation:
    """Replace a generation's content, snapshotting the old content first.

    The live content always belongs to ``current_version``, one past the
    newest ledger entry. Saving identical content changes nothing.
    Returns an updated copy; the argument is left untouched.
    """
    current = generation.content or ""
    if new_content == current:
        logger.info("Content unchanged, skipping version snapshot",
                    generation_id=generation.id, version=generation.current_version)
        return generation

    versions: List[ContentVersion] = list(generation.versions)
    current_version = generation.current_version
    newest = max((v.version for v in versions), default=0)
    if current_version <= newest:
        # Live content must sit past every snapshot
        repaired = newest + 1
        logger.warning("Current version already in ledger, moving past it",
                       generation_id=generation.id, current_version=current_version, repaired=repaired)
        current_version = repaired

    versions.append(ContentVersion(
        version=current_version,
        content=current,
        updated_at=now or datetime.now(timezone.utc),
        updated_by=editor,
        notes=notes,
    ))
    logger.info("Recorded content version", generation_id=generation.id,
                version=current_version, editor=editor)
    return generation.model_copy(update={
        "versions": versions,
        "current_version": current_version + 1,
        "content": new_content,
    })
