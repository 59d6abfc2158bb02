"""Best-effort audit trail for admin and user actions.

Audit writes happen after the response has been sent and must never fail
the request that triggered them: storage errors are logged and counted.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from ..dao import Database
from ..observability import AUDIT_FAILURES

logger = logging.getLogger(__name__)


@dataclass
class AuditParams:
    user_id: Optional[int]
    action: str
    entity: str
    entity_id: Optional[int] = None
    details: str = ""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogger:
    def __init__(self, db: Database):
        self.db = db

    def log_activity(self, params: AuditParams) -> bool:
        try:
            with self.db.connect() as conn:
                conn.execute(
                    "INSERT INTO audit_log (user_id, action, entity, entity_id, details, ip_address, user_agent) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        params.user_id,
                        params.action,
                        params.entity,
                        params.entity_id,
                        params.details,
                        params.ip_address,
                        params.user_agent,
                    ),
                )
        except sqlite3.Error as e:
            AUDIT_FAILURES.inc()
            logger.warning("Audit write failed action=%s entity=%s: %s", params.action, params.entity, e)
            return False
        return True
