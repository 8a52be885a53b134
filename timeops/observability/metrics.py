"""
Prometheus metrics for the timer and approval engine.
"""
import logging
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

from timeops.config import settings

logger = logging.getLogger(__name__)


timer_resyncs_total = Counter(
    "timer_resyncs_total",
    "Timer resynchronizations by outcome (applied, ignored, failed)",
    ["outcome"],
)

timer_conflicts_total = Counter(
    "timer_conflicts_total",
    "Start requests rejected because a timer was already running",
)

timer_mutations_total = Counter(
    "timer_mutations_total",
    "Timer start/stop/discard calls by outcome",
    ["operation", "outcome"],
)

review_actions_total = Counter(
    "review_actions_total",
    "Bulk approve/reject calls by outcome",
    ["action", "outcome"],
)


def setup_metrics(app, enabled: bool | None = None):
    """
    Instrument the FastAPI app and expose /metrics.
    Only enabled when METRICS_ENABLED is true.
    """
    if enabled is None:
        enabled = settings.METRICS_ENABLED
    if not enabled:
        return None

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["observability"])
    logger.info("Prometheus metrics exposed at /metrics")
    return instrumentator
