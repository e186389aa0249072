"""
Structured logging: context binding and JSON formatting.
"""

import json
import logging
import sys
from uuid import uuid4

from split_kernel.domain.dtos import BillingScope
from split_kernel.exceptions import CycleAlreadyClosedError
from split_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _record(message, exc_info=None, **extra):
    record = logging.LogRecord(
        "split_kernel.test", logging.WARNING, __file__, 1, message, (), exc_info
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_bind_restores_previous_values(self):
        LogContext.set(correlation_id="req-1")

        with LogContext.bind(configuration_id="cfg-1", actor_id="actor-1"):
            assert LogContext.get_all() == {
                "correlation_id": "req-1",
                "actor_id": "actor-1",
                "configuration_id": "cfg-1",
            }

        assert LogContext.get_all() == {"correlation_id": "req-1"}

    def test_bind_ignores_none(self):
        with LogContext.bind(cycle_id=None):
            assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(cycle_id="cycle-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestStructuredFormatter:
    def test_extra_fields_and_context_in_payload(self):
        with LogContext.bind(cycle_id="cycle-9"):
            line = StructuredFormatter().format(_record("usage_tracked", feature="inspections"))

        payload = json.loads(line)
        assert payload["message"] == "usage_tracked"
        assert payload["level"] == "WARNING"
        assert payload["feature"] == "inspections"
        assert payload["cycle_id"] == "cycle-9"

    def test_kernel_error_fields_exposed(self):
        try:
            raise CycleAlreadyClosedError("cycle-1", "2024-01")
        except CycleAlreadyClosedError:
            record = _record("close_failed", exc_info=sys.exc_info())

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["exc_type"] == "CycleAlreadyClosedError"
        assert payload["exc_code"] == "CYCLE_ALREADY_CLOSED"
        assert payload["exc_billing_month"] == "2024-01"
        assert "traceback" in payload

    def test_loggers_share_kernel_namespace(self):
        assert get_logger("services.billing").name == "split_kernel.services.billing"


class TestServiceLogs:
    def test_close_logs_carry_cycle_context(
        self, billing_service, test_actor_id, captured_logs
    ):
        cycle = billing_service.get_or_create_current_cycle(BillingScope(agency_id=uuid4()))

        billing_service.close_cycle(cycle.id, test_actor_id)

        closed = next(r for r in captured_logs() if r["message"] == "billing_cycle_closed")
        assert closed["cycle_id"] == str(cycle.id)
        assert closed["actor_id"] == str(test_actor_id)
        assert closed["charge_count"] == 0
