"""Audit trail helpers."""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from mediatier.core.models import FileState
from mediatier.db.models import ActivityLog, MediaItem
from mediatier.utils.timeutil import utcnow

# Actions écrites dans activity_logs
TRANSITION_TO_MKV = "TransitionToMkv"
TRANSITION_TO_SYMLINK = "TransitionToSymlink"
DOWNLOAD_COMPLETE = "DownloadComplete"
DOWNLOAD_MISSING = "DownloadMissing"
REQUEST_AVAILABLE = "RequestAvailable"
STATE_CORRECTED = "StateCorrected"
PENDING_RESOLVED = "PendingResolved"


def record_activity(
    db: Session,
    item: MediaItem,
    action: str,
    from_state: Optional[FileState] = None,
    to_state: Optional[FileState] = None,
    details: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ActivityLog:
    """Ajoute une ligne au journal (commit à la charge de l'appelant)."""
    entry = ActivityLog(
        media_item=item,
        action=action,
        from_state=from_state,
        to_state=to_state,
        details=details,
        timestamp=timestamp or utcnow(),
    )
    db.add(entry)
    return entry
