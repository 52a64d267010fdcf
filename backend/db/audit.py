"""
Audit trail for admin actions (pricing changes, decisions, key issuance).

Rows are added to the caller's session and committed with the change they
describe.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AuditLog

logger = structlog.get_logger()


def record(
    db: AsyncSession,
    actor: str,
    action: str,
    entity: str,
    entity_id: Any = None,
    details: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details,
    )
    db.add(entry)
    logger.info("audit.recorded", actor=actor, action=action, entity=entity, entity_id=entry.entity_id)
    return entry
