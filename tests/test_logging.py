"""
Tests for structured logging as the services emit it.

Validates:
- Conflict and rate-limit events carry their business fields as JSON keys
- Order and scan context bound by the services reaches every line and is
  restored afterwards
- Kernel exceptions are flattened into exc_* fields
- configure_logging() is idempotent and accepts level names
"""

import json
import logging
from datetime import date
from io import StringIO
from uuid import uuid4

import pytest

from supply_kernel.exceptions import RateLimitError, VersionConflictError
from supply_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from supply_modules.alerts.models import AlertSeverity
from supply_modules.catalog.models import Criticality
from supply_modules.purchasing.models import OrderLineInput, PurchaseOrderStatus, SendChannel

REASON = "truck confirmed for tomorrow morning"


def _events(records: list[dict], message: str) -> list[dict]:
    return [r for r in records if r["message"] == message]


@pytest.fixture
def order(lifecycle, make_supplier, make_material, test_actor_id):
    supplier = make_supplier()
    material = make_material(code="MP-YEAST", supplier=supplier)
    return lifecycle.create(supplier.id, [OrderLineInput(material.id, 5)], test_actor_id)


# ---------------------------------------------------------------------------
# Service events
# ---------------------------------------------------------------------------


class TestServiceEvents:
    def test_version_conflict_names_both_versions(self, lifecycle, order, captured_logs, test_actor_id):
        with pytest.raises(VersionConflictError):
            lifecycle.send(order.id, SendChannel.EMAIL, None, test_actor_id, expected_version=7)

        (record,) = _events(captured_logs(), "purchase_order_version_conflict")
        assert record["level"] == "WARNING"
        assert record["reference"] == order.reference
        assert record["expected_version"] == 7
        assert record["actual_version"] == 1
        assert record["order_id"] == str(order.id)
        assert record["actor_id"] == str(test_actor_id)

    def test_send_binds_order_context(self, lifecycle, order, captured_logs, test_actor_id):
        lifecycle.send(order.id, SendChannel.EMAIL, None, test_actor_id, expected_version=1)

        (record,) = _events(captured_logs(), "purchase_order_sent")
        assert record["order_id"] == str(order.id)
        assert record["reference"] == order.reference
        assert record["channel"] == SendChannel.EMAIL.value
        assert LogContext.get_all() == {}

    def test_context_is_restored_after_failure(self, lifecycle, order, test_actor_id):
        lifecycle.send(order.id, SendChannel.EMAIL, None, test_actor_id, expected_version=1)

        with pytest.raises(VersionConflictError):
            lifecycle.confirm(order.id, test_actor_id, expected_version=1)

        assert LogContext.get_all() == {}
        assert lifecycle.get_order(order.id).status == PurchaseOrderStatus.SENT

    def test_postpone_rate_limited(
        self, alert_engine, make_material, add_stock, captured_logs, test_actor_id
    ):
        material = make_material()
        add_stock(material, 4)
        alert_engine.postpone(material.id, "4h", REASON, test_actor_id)
        alert_engine.postpone(material.id, "4h", REASON, test_actor_id)

        with pytest.raises(RateLimitError):
            alert_engine.postpone(material.id, "4h", REASON, test_actor_id)

        (record,) = _events(captured_logs(), "postpone_rate_limited")
        assert record["count"] == 2
        assert record["limit"] == 2
        assert record["material_id"] == str(material.id)

    def test_scan_lines_share_one_correlation_id(self, alert_engine, make_material, captured_logs):
        make_material(criticality=Criticality.BLOCKING)
        make_material(criticality=Criticality.BLOCKING)

        alert_engine.scan()

        records = captured_logs()
        scan_lines = _events(records, "alert_scan_started") + _events(records, "alert_raised")
        scan_lines += _events(records, "alert_scan_completed")
        assert len(scan_lines) == 4
        assert len({r["correlation_id"] for r in scan_lines}) == 1
        assert all(r["severity"] == AlertSeverity.CRITICAL.value for r in _events(records, "alert_raised"))


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    @pytest.fixture
    def emit(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        logger = get_logger("tests.formatter")
        logger.addHandler(handler)

        def _emit(level, message, **kwargs) -> dict:
            logger.log(level, message, **kwargs)
            return json.loads(stream.getvalue().strip().split("\n")[-1])

        yield _emit
        logger.removeHandler(handler)

    def test_kernel_error_fields(self, emit):
        material_id = uuid4()
        try:
            raise RateLimitError(material_id, 2, 2, 7)
        except RateLimitError:
            record = emit(logging.ERROR, "postpone_failed", exc_info=True)

        assert record["exc_type"] == "RateLimitError"
        assert record["exc_code"] == "RATE_LIMITED"
        assert record["exc_entity_id"] == str(material_id)
        assert record["exc_window_days"] == 7
        assert "traceback" in record

    def test_domain_values_are_rendered(self, emit):
        lot_id = uuid4()
        record = emit(
            logging.INFO,
            "lot_created",
            extra={"lot_id": lot_id, "received_on": date(2024, 1, 9), "criticality": Criticality.HIGH},
        )
        assert record["lot_id"] == str(lot_id)
        assert record["received_on"] == "2024-01-09"
        assert record["criticality"] == Criticality.HIGH.value

    def test_unknown_values_fall_back_to_str(self, emit):
        record = emit(logging.INFO, "odd_payload", extra={"blob": object})
        assert record["blob"] == str(object)

    def test_extra_does_not_override_context(self, emit):
        with LogContext.bind(order_id="bound"):
            record = emit(logging.INFO, "purchase_order_confirmed", extra={"order_id": "extra"})
        assert record["order_id"] == "bound"


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_nested_binds_restore_outer_values(self):
        with LogContext.bind(correlation_id="scan-1"):
            with LogContext.bind(material_id="mat-1", correlation_id="scan-2"):
                assert LogContext.get_all() == {"correlation_id": "scan-2", "material_id": "mat-1"}
            assert LogContext.get_all() == {"correlation_id": "scan-1"}
        assert LogContext.get_all() == {}

    def test_only_known_fields_are_kept(self):
        with LogContext.bind(order_id=uuid4(), supplier_id="not-bound", actor_id=None):
            assert set(LogContext.get_all()) == {"order_id"}
        assert set(CONTEXT_FIELDS) >= {"order_id", "material_id", "correlation_id"}

    def test_set_merges(self):
        LogContext.set(actor_id="a")
        LogContext.set(trace_id="t")
        assert LogContext.get_all() == {"actor_id": "a", "trace_id": "t"}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def fresh_logging(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG)

    def test_second_call_is_ignored(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("supply_kernel").handlers) == 1

    def test_level_name_accepted(self):
        configure_logging(level="WARNING", stream=StringIO())
        assert logging.getLogger("supply_kernel").level == logging.WARNING

    def test_module_loggers_nest_under_kernel(self):
        assert get_logger("modules.purchasing.service").name == "supply_kernel.modules.purchasing.service"
