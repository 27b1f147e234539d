"""
Audit trail for reviewer and admin actions
"""

from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from models.audit import AuditLogEntry
import logging

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def log(
        self,
        actor: str,
        action: str,
        target_type: str,
        target_id: Any,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLogEntry:
        """Stage an audit entry in the caller's transaction."""
        entry = AuditLogEntry(
            actor=actor,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            before=before,
            after=after,
            ip_address=ip_address,
        )
        self.db.add(entry)
        logger.info(f"audit: {actor} {action} {target_type}:{target_id}")
        return entry
