# metrics_logger.py
# Description: Structured sync metrics, written as loguru records on a dedicated level.
#
# Every metric is one log record at the METRIC level with `event`, `type`, `value`
# and `labels` bound as extras. The JSON metrics sink in Logging_Config picks
# these records out; the console and app log show them as one-line summaries.
#
# Imports
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union, TYPE_CHECKING
#
# Third-party Imports
from loguru import logger
#
# Local Imports
if TYPE_CHECKING:
    from ..Sync.ingestion import IngestionReport
    from ..Sync.orchestrator import SyncReport
#
############################################################################################################
#
# Functions:

LabelValue = Union[str, int, float, bool]
LabelDict = Dict[str, LabelValue]

METRIC_LEVEL = "METRIC"
logger.level(METRIC_LEVEL, no=25, color="<blue>")


def log_metric(metric_name: str, metric_type: str, value: Any, labels: Optional[LabelDict] = None):
    """Writes one metric record. `metric_type` is counter, gauge or histogram."""
    logger.bind(
        event=metric_name,
        type=metric_type,
        value=value,
        labels=labels or {},
        timestamp=datetime.now(timezone.utc).isoformat(),
    ).log(METRIC_LEVEL, f"{metric_type.capitalize()} '{metric_name}': {value}")


class SyncMetrics:
    """
    Metrics for one store's sync engine.

    The orchestrator and both pipelines share one instance, so every metric
    carries the same base labels (normally the store path). Zero-valued counters
    are not written.
    """

    def __init__(self, base_labels: Optional[LabelDict] = None):
        self.base_labels: LabelDict = dict(base_labels or {})

    def _emit(self, name: str, metric_type: str, value: Any, labels: Optional[LabelDict] = None):
        log_metric(name, metric_type, value, {**self.base_labels, **(labels or {})})

    def _count(self, name: str, value: int, labels: Optional[LabelDict] = None):
        if value:
            self._emit(name, "counter", value, labels)

    # --- Ingestion ---
    def batch_ingested(self, report: "IngestionReport"):
        """One counter per row outcome of an ingested batch."""
        for outcome in ("inserted", "updated", "deleted", "skipped", "failed"):
            self._count("sync_records_ingested_total", getattr(report, outcome), {"outcome": outcome})
        self._count("sync_field_write_failures_total", report.field_failures)

    # --- Emission ---
    def record_emitted(self, table_name: str):
        self._count("sync_records_emitted_total", 1, {"table": table_name})

    # --- Sync cycle ---
    def cycle_finished(self, report: "SyncReport", duration_seconds: float, pending_changes: int):
        status = "success" if report.ok else "failure"
        self._emit("sync_cycle_duration_seconds", "histogram", duration_seconds, {"status": status})
        self._count("sync_tombstones_drained_total", report.tombstones_drained)
        self._count("sync_rows_queued_total", report.rows_queued)
        self._count("sync_records_sent_total", report.records_saved, {"outcome": "saved"})
        self._count("sync_records_sent_total", report.records_deleted, {"outcome": "deleted"})
        self._count("sync_records_sent_total", report.records_failed, {"outcome": "failed"})
        self._emit("sync_pending_changes", "gauge", pending_changes)

#
# End of metrics_logger.py
############################################################################################################
