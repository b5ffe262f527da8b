import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class AnalyticsSink(Protocol):
    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        ...


class LoggingAnalyticsSink:
    """Fire-and-forget analytics that lands in the application log."""

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        logger.info(f"analytics event={event_type} data={data}")
