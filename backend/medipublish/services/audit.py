# backend/medipublish/services/audit.py

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import logging

from sqlalchemy.orm import Session

from medipublish.models.audit import AuditLog

logger = logging.getLogger(__name__)

CME_ACTIVITY_CREATED = "CME_ACTIVITY_CREATED"
CME_ACTIVITY_PUBLISHED = "CME_ACTIVITY_PUBLISHED"
CME_CREDIT_EARNED = "CME_CREDIT_EARNED"


class AuditTrail:
    """
    Append-only audit event sink.

    Built once at process start and handed to the services that emit events.
    Events are added to the caller's session, so they commit (or roll back)
    together with the change they describe.
    """

    def __init__(self, source: str = "medipublish"):
        self.source = source

    def record(
        self,
        db: Session,
        user_id: str,
        activity: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            activity=activity,
            event_metadata={"source": self.source, **(metadata or {})},
            created_at=datetime.now(timezone.utc),
        )
        db.add(entry)
        logger.info("[AUDIT] %s user=%s %s", activity, user_id, metadata or {})
        return entry
