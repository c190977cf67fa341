# test_metrics_logging.py
#
#
# Imports
import json
import logging
import sys
#
# Third-Party Imports
import pytest
from loguru import logger
#
# Local Imports
from tablesync.Logging_Config import InterceptHandler, configure_logging_from_settings, setup_logger
from tablesync.Metrics.metrics_logger import METRIC_LEVEL, SyncMetrics, log_metric
from tablesync.Sync.ingestion import IngestionReport
from tablesync.Sync.orchestrator import SyncReport
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def restore_logger():
    yield
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, InterceptHandler)]:
        root.removeHandler(handler)
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def metric_records():
    """Collects the extras of every METRIC record as (event, type, value, labels) tuples."""
    captured = []

    def sink(message):
        extra = message.record["extra"]
        captured.append((extra["event"], extra["type"], extra["value"], extra["labels"]))

    handler_id = logger.add(sink, level=METRIC_LEVEL, filter=lambda r: r["level"].name == METRIC_LEVEL)
    yield captured
    logger.remove(handler_id)


def test_log_metric_binds_structured_extras(metric_records, caplog_loguru):
    log_metric("rows_total", "counter", 3, {"table": "Person"})

    assert metric_records == [("rows_total", "counter", 3, {"table": "Person"})]
    assert "Counter 'rows_total': 3" in caplog_loguru.messages


def test_batch_ingested_counts_each_outcome(metric_records):
    SyncMetrics({"store": "a.db"}).batch_ingested(IngestionReport(inserted=2, updated=1, failed=1,
                                                                  field_failures=3))

    assert metric_records == [
        ("sync_records_ingested_total", "counter", 2, {"store": "a.db", "outcome": "inserted"}),
        ("sync_records_ingested_total", "counter", 1, {"store": "a.db", "outcome": "updated"}),
        ("sync_records_ingested_total", "counter", 1, {"store": "a.db", "outcome": "failed"}),
        ("sync_field_write_failures_total", "counter", 3, {"store": "a.db"}),
    ]


def test_record_emitted_is_labelled_with_table(metric_records):
    SyncMetrics().record_emitted("Person")
    assert metric_records == [("sync_records_emitted_total", "counter", 1, {"table": "Person"})]


def test_cycle_finished_writes_duration_counters_and_pending_gauge(metric_records):
    report = SyncReport(tombstones_drained=1, records_saved=4, errors=["fetch changes: offline"])

    SyncMetrics({"store": "a.db"}).cycle_finished(report, 0.25, pending_changes=2)

    by_event = {(event, labels.get("outcome")): (kind, value, labels) for event, kind, value, labels in metric_records}
    assert by_event[("sync_cycle_duration_seconds", None)] == (
        "histogram", 0.25, {"store": "a.db", "status": "failure"})
    assert by_event[("sync_tombstones_drained_total", None)][1] == 1
    assert by_event[("sync_records_sent_total", "saved")][1] == 4
    assert by_event[("sync_pending_changes", None)] == ("gauge", 2, {"store": "a.db"})
    # Zero counters are not written.
    assert ("sync_rows_queued_total", None) not in by_event
    assert ("sync_records_sent_total", "failed") not in by_event


def test_intercept_handler_forwards_stdlib_records(caplog_loguru):
    std_logger = logging.getLogger("tablesync.tests.stdlib")
    std_logger.propagate = False
    handler = InterceptHandler()
    std_logger.addHandler(handler)
    try:
        std_logger.warning("from the stdlib")
    finally:
        std_logger.removeHandler(handler)

    assert "from the stdlib" in caplog_loguru.messages


def test_setup_logger_writes_app_and_metrics_files(tmp_path, restore_logger):
    app_log = tmp_path / "logs" / "app.log"
    metrics_log = tmp_path / "logs" / "metrics.json"

    setup_logger(log_level="DEBUG", app_log_path=str(app_log), metrics_log_path=str(metrics_log),
                 intercept_stdlib=False)
    logger.info("plain message")
    SyncMetrics().record_emitted("Person")
    logger.complete()

    assert "plain message" in app_log.read_text(encoding="utf-8")
    metric_lines = [json.loads(line) for line in metrics_log.read_text(encoding="utf-8").splitlines()]
    assert len(metric_lines) == 1
    assert metric_lines[0]["record"]["extra"]["event"] == "sync_records_emitted_total"
    assert metric_lines[0]["record"]["extra"]["labels"] == {"table": "Person"}


def test_configure_from_settings_without_files(restore_logger, tmp_path):
    configure_logging_from_settings({"logging": {"log_level": "warning", "app_log_path": ""}})
    assert not list(tmp_path.iterdir())

#
# End of test_metrics_logging.py
########################################################################################################################
