"""
Service base class
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Any

from core.interfaces import IBillingStore

logger = logging.getLogger(__name__)

class BaseService:
    """Base class shared by every billing service"""

    def __init__(self, db_helper: IBillingStore):
        self.db_helper = db_helper
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _now_iso(self) -> str:
        return self._now().isoformat()

    async def log_billing_action(self, action: str, data: Dict[str, Any] = None, user_id: str = None):
        """Record a billing action in system_logs without failing the caller"""
        try:
            await self.db_helper.log_system_event(
                user_id=user_id,
                event_type=f"billing_{action}",
                event_data=data or {},
            )
        except Exception as e:
            self.logger.warning("Billing action log failed: %s", e)
