"""Critical error sink for states that need manual operator attention."""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from src.enrollment.errors import StoreError
from src.enrollment.logging import get_logger
from src.enrollment.models import utc_now
from src.enrollment.store.base import RecordStore

logger = get_logger(__name__)


class CriticalErrorReporter:
    """Posts critical error reports to the backend error endpoint.

    A failed post is logged and never raised.
    """

    def __init__(
        self,
        store: RecordStore,
        sink_path: str = "/system/errors",
        service_name: str = "theory-enrollment",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.sink_path = sink_path
        self.service_name = service_name
        self.clock = clock

    async def report(self, error_type: str, context: dict[str, Any]) -> bool:
        """Send one report. Returns True if the sink accepted it."""
        payload = {
            "type": error_type,
            "context": context,
            "timestamp": self.clock().isoformat(),
            "severity": "critical",
            "service": self.service_name,
        }
        logger.critical("critical_error", error_type=error_type, **context)
        try:
            await self.store.post(self.sink_path, payload)
        except StoreError as e:
            logger.error(
                "critical_error_report_failed", error_type=error_type, error=str(e)
            )
            return False
        logger.info("critical_error_reported", error_type=error_type)
        return True
