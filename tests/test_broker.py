"""
Tests for ApprovalBroker

Covers the request/await round-trip over the file mailbox and in-process
queue transports, timeouts, malformed payloads and late writes.
"""

import asyncio
import json

import pytest

from approval_gate.approvals.broker import (
    INVALID_MESSAGE,
    TIMEOUT_MESSAGE,
    generate_approval_id,
)
from approval_gate.approvals.presenter import CallbackPresenter
from approval_gate.models import ApprovalScope, Behavior, RiskLevel


async def _submit(broker, tool_input=None):
    return await broker.submit(
        tool_name="Bash",
        user="U1",
        channel="C1",
        tool_input=tool_input if tool_input is not None else {"command": "make deploy"},
        risk_level=RiskLevel.MEDIUM,
        scope=ApprovalScope.COMMAND,
    )


def test_approval_ids_are_unique():
    ids = {generate_approval_id() for _ in range(200)}
    assert len(ids) == 200
    assert all("_" in approval_id for approval_id in ids)


# ============================================================================
# TIMEOUT
# ============================================================================


@pytest.mark.asyncio
async def test_timeout_denies_and_leaves_no_pending_state(make_broker, file_transport):
    broker = make_broker(file_transport, timeout=0.1)
    pending = await _submit(broker)
    assert broker.is_pending(pending.approval_id)
    assert file_transport.request_path(pending.approval_id).exists()

    response = await broker.await_with_timeout(pending.approval_id)

    assert response.behavior == Behavior.DENY
    assert "timed out" in response.message
    assert response.message == TIMEOUT_MESSAGE
    assert not response.decided
    assert broker.pending_count == 0
    assert not file_transport.request_path(pending.approval_id).exists()


@pytest.mark.asyncio
async def test_late_write_after_timeout_is_ignored(make_broker, queue_transport, store):
    broker = make_broker(queue_transport, timeout=0.05)
    pending = await _submit(broker)
    await broker.await_with_timeout(pending.approval_id)

    await broker.resolve_externally(pending.approval_id, True)

    assert not broker.is_pending(pending.approval_id)
    assert len(store) == 0
    assert queue_transport._queues == {}


# ============================================================================
# RESOLUTION
# ============================================================================


@pytest.mark.asyncio
async def test_file_mailbox_round_trip(make_broker, file_transport, store):
    broker = make_broker(file_transport, timeout=2.0)
    pending = await _submit(broker)

    async def _answer():
        await asyncio.sleep(0.05)
        await broker.resolve_externally(pending.approval_id, True, updated_input={"command": "make"})

    answer = asyncio.create_task(_answer())
    response = await broker.await_with_timeout(pending.approval_id)
    await answer

    assert response.behavior == Behavior.ALLOW
    assert response.updated_input == {"command": "make"}
    assert response.message == "Approved by user"
    assert not file_transport.mailbox_path(pending.approval_id).exists()
    assert broker.pending_count == 0
    assert len(store) == 1


@pytest.mark.asyncio
async def test_resolution_from_another_broker_uses_published_context(
    make_broker, file_transport, store
):
    waiting = make_broker(file_transport, timeout=2.0)
    resolver_side = make_broker(type(file_transport)(str(file_transport.mailbox_dir)))
    pending = await _submit(waiting)

    response = await resolver_side.resolve_externally(pending.approval_id, False)

    assert response.behavior == Behavior.DENY
    stored = store.lookup("Bash", "U1", "C1", pending.input, ApprovalScope.COMMAND)
    assert stored is not None
    assert stored.behavior == Behavior.DENY

    result = await waiting.await_with_timeout(pending.approval_id)
    assert result.behavior == Behavior.DENY
    assert result.message == "Denied by user"


@pytest.mark.asyncio
async def test_queue_round_trip(make_broker, queue_transport):
    broker = make_broker(queue_transport, timeout=2.0)
    pending = await _submit(broker)

    await broker.resolve_externally(pending.approval_id, True)
    response = await broker.await_with_timeout(pending.approval_id)

    assert response.allowed
    assert response.decided
    assert await queue_transport.load_pending(pending.approval_id) is None


@pytest.mark.asyncio
async def test_only_first_decision_is_honoured(make_broker, queue_transport):
    broker = make_broker(queue_transport, timeout=2.0)
    pending = await _submit(broker)

    await queue_transport.deliver(pending.approval_id, {"behavior": "deny", "message": "first"})
    await queue_transport.deliver(pending.approval_id, {"behavior": "allow", "message": "second"})

    response = await broker.await_with_timeout(pending.approval_id)

    assert response.behavior == Behavior.DENY
    assert response.message == "first"


@pytest.mark.asyncio
async def test_unknown_id_is_written_but_not_recorded(make_broker, file_transport, store):
    broker = make_broker(file_transport)

    await broker.resolve_externally("does_not_exist", True)

    assert file_transport.mailbox_path("does_not_exist").exists()
    assert len(store) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [["allow"], {}, {"behavior": "maybe"}, "allow"])
async def test_malformed_payload_is_an_undecided_denial(make_broker, file_transport, payload):
    broker = make_broker(file_transport, timeout=2.0)
    pending = await _submit(broker)
    file_transport.mailbox_path(pending.approval_id).write_text(json.dumps(payload))

    response = await broker.await_with_timeout(pending.approval_id)

    assert response.behavior == Behavior.DENY
    assert response.message == INVALID_MESSAGE
    assert not response.decided
    assert broker.pending_count == 0


@pytest.mark.asyncio
async def test_read_errors_keep_polling(make_broker, file_transport):
    broker = make_broker(file_transport, timeout=2.0)
    pending = await _submit(broker)
    mailbox = file_transport.mailbox_path(pending.approval_id)
    mailbox.write_text("{half-writt")

    async def _fix():
        await asyncio.sleep(0.05)
        mailbox.write_text(json.dumps({"behavior": "allow"}))

    fixer = asyncio.create_task(_fix())
    response = await broker.await_with_timeout(pending.approval_id)
    await fixer

    assert response.behavior == Behavior.ALLOW


# ============================================================================
# PRESENTATION
# ============================================================================


@pytest.mark.asyncio
async def test_request_decision_presents_then_waits(make_broker, queue_transport):
    presented = []

    async def _present(approval_id, summary, pending):
        presented.append((approval_id, summary))
        await broker.resolve_externally(approval_id, True)

    broker = make_broker(queue_transport, presenter=CallbackPresenter(_present, "Test"))
    pending = await _submit(broker)

    response = await broker.request_decision(pending, "summary text")

    assert response.allowed
    assert presented == [(pending.approval_id, "summary text")]


@pytest.mark.asyncio
async def test_presenter_failure_discards_pending(make_broker, queue_transport):
    async def _fail(approval_id, summary, pending):
        raise RuntimeError("chat API down")

    broker = make_broker(queue_transport, presenter=CallbackPresenter(_fail))
    pending = await _submit(broker)

    with pytest.raises(RuntimeError):
        await broker.request_decision(pending, "summary")

    assert broker.pending_count == 0
    assert await queue_transport.load_pending(pending.approval_id) is None


@pytest.mark.asyncio
async def test_submit_carries_thread_context(make_broker, file_transport):
    broker = make_broker(file_transport)

    pending = await broker.submit(
        tool_name="Bash",
        user="U1",
        channel="C1",
        tool_input={"command": "make deploy"},
        risk_level=RiskLevel.MEDIUM,
        scope=ApprovalScope.COMMAND,
        thread_ts="1700000000.000100",
        request_id="req-7",
    )

    published = await file_transport.load_pending(pending.approval_id)
    assert published.thread_ts == "1700000000.000100"
    assert published.request_id == "req-7"
