"""Structured JSON logging: record shape, approval context, exception fields."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from erp_kernel.exceptions import AccessDeniedError, SideEffectError
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def emit():
    """
    Configure logging into a buffer; returns ``(logger, records)``.

    ``records()`` parses every JSON line written so far; ``records.handler``
    is the handler installed on the kernel logger.
    """
    reset_logging()
    LogContext.clear()
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    configure_logging(handler=handler)

    def records() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    records.handler = handler
    yield get_logger("tests"), records

    LogContext.clear()
    reset_logging()


def _raise_and_log(logger, exc, message):
    try:
        raise exc
    except type(exc):
        logger.error(message, exc_info=True)


class TestRecordShape:
    def test_core_fields(self, emit):
        logger, records = emit
        logger.info("entity_created")
        [record] = records()
        assert record["message"] == "entity_created"
        assert record["level"] == "INFO"
        assert record["logger"] == "erp_kernel.tests"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_and_types(self, emit):
        logger, records = emit
        entity_id = uuid4()
        logger.info(
            "ledger_posted",
            extra={
                "source_entity_id": entity_id,
                "opening_balance": Decimal("197000.00"),
                "balance_type": "Dr",
            },
        )
        [record] = records()
        assert record["source_entity_id"] == str(entity_id)
        assert record["opening_balance"] == "197000.00"
        assert record["balance_type"] == "Dr"

    def test_extra_does_not_override_context(self, emit):
        logger, records = emit
        with LogContext.bind(entity_type="loan"):
            logger.info("entity_advanced", extra={"entity_type": "bank_account", "level_id": 2})
        [record] = records()
        assert record["entity_type"] == "loan"
        assert record["level_id"] == 2

    def test_level_threshold(self, emit):
        logger, records = emit
        logger.debug("sequence_allocated")
        logger.warning("access_denied")
        assert [r["message"] for r in records()] == ["access_denied"]


class TestExceptionFields:
    def test_plain_exception(self, emit):
        logger, records = emit
        _raise_and_log(logger, KeyError("cc_code"), "side_effect_line_failed")
        [record] = records()
        assert record["exc_type"] == "KeyError"
        assert "Traceback" in record["traceback"]
        assert "exc_code" not in record

    def test_kernel_error_attributes(self, emit):
        logger, records = emit
        _raise_and_log(logger, AccessDeniedError(155, 99), "access_denied")
        [record] = records()
        assert record["exc_code"] == "ACCESS_DENIED"
        assert (record["exc_workflow_id"], record["exc_role_id"]) == (155, 99)

    def test_side_effect_counts(self, emit):
        logger, records = emit
        error = SideEffectError("sub_client", "x", 2, 1, ("line 3 (CC-99): cost centre missing",))
        _raise_and_log(logger, error, "side_effect_partial")
        [record] = records()
        assert (record["exc_succeeded"], record["exc_failed"]) == (2, 1)
        assert record["exc_reasons"] == ["line 3 (CC-99): cost centre missing"]


class TestLogContext:
    def test_set_merges_and_ignores_none(self):
        LogContext.clear()
        LogContext.set(correlation_id="req-1")
        LogContext.set(actor_id="a-1", entity_id=None)
        assert LogContext.get_all() == {"correlation_id": "req-1", "actor_id": "a-1"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_snapshot(self):
        LogContext.clear()
        LogContext.set(workflow_id="154")
        with LogContext.bind(workflow_id=155, entity_id="e-1"):
            assert LogContext.get_all() == {"workflow_id": "155", "entity_id": "e-1"}
        assert LogContext.get_all() == {"workflow_id": "154"}
        LogContext.clear()

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant="acme")

    def test_transition_records_carry_context(
        self, workflow_engine, client_payload, executive, captured_logs
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "documents checked")

        [advanced] = [r for r in captured_logs() if r["message"] == "entity_advanced"]
        assert advanced["entity_type"] == "client"
        assert advanced["entity_id"] == str(client.id)
        assert advanced["actor_id"] == str(executive.actor_id)
        assert advanced["workflow_id"] == "154"
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_second_call_is_noop(self, emit):
        _, records = emit
        extra = logging.StreamHandler(StringIO())
        configure_logging(handler=extra)
        handlers = logging.getLogger("erp_kernel").handlers
        assert extra not in handlers
        assert records.handler in handlers

    def test_does_not_propagate(self, emit):
        assert logging.getLogger("erp_kernel").propagate is False

    def test_child_loggers(self):
        assert get_logger("services.workflow_engine").name == "erp_kernel.services.workflow_engine"

    def test_formatter_usable_standalone(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        record = logging.LogRecord("erp_kernel.x", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        handler.emit(record)
        assert json.loads(stream.getvalue())["message"] == "hello world"
