"""Pytest fixtures and test utilities for the approval gate test suite."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest

from approval_gate.approvals.broker import ApprovalBroker
from approval_gate.approvals.store import ApprovalStore
from approval_gate.approvals.transports import FileMailboxTransport, QueueTransport
from approval_gate.audit import AuditLogger
from approval_gate.gate import PolicyGate
from approval_gate.policy.local_config import ConfigResolver
from approval_gate.policy.scope import ScopeEngine


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# ENVIRONMENT FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def clean_request_context(monkeypatch):
    """Keep a developer's PERMISSION_CONTEXT from leaking into tests."""
    monkeypatch.delenv("PERMISSION_CONTEXT", raising=False)


@pytest.fixture
def clock():
    """
    Provide a controllable clock.

    Returns:
        FakeClock starting at a fixed epoch
    """
    return FakeClock()


# ============================================================================
# LOCAL POLICY FIXTURES
# ============================================================================


@pytest.fixture
def write_policy(tmp_path):
    """
    Write a policy file under ``<dir>/.claude/``.

    Returns:
        Callable: write(directory, config, personal=False) -> Path
    """

    def _write(directory: Path, config: Any, personal: bool = False) -> Path:
        policy_dir = Path(directory) / ".claude"
        policy_dir.mkdir(parents=True, exist_ok=True)
        name = "settings.local.json" if personal else "settings.json"
        path = policy_dir / name
        path.write_text(json.dumps(config), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def project_dir(tmp_path):
    """Working directory nested below the temporary root."""
    path = tmp_path / "workspace" / "proj"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def resolver(clock):
    """ConfigResolver with default limits and a fake clock."""
    return ConfigResolver(policy_dir_name=".claude", clock=clock)


# ============================================================================
# APPROVAL FIXTURES
# ============================================================================


@pytest.fixture
def approvals_file(tmp_path):
    return tmp_path / "approvals.json"


@pytest.fixture
def store(approvals_file, clock):
    """Empty ApprovalStore persisted to a temporary file."""
    return ApprovalStore(str(approvals_file), clock=clock)


@pytest.fixture
def queue_transport():
    return QueueTransport()


@pytest.fixture
def file_transport(tmp_path):
    return FileMailboxTransport(str(tmp_path / "mailbox"))


@pytest.fixture
def make_broker(store):
    """
    Build brokers with short timeouts.

    Returns:
        Callable: make(transport, timeout=1.0, presenter=None) -> ApprovalBroker
    """

    def _make(transport, timeout: float = 1.0, presenter=None) -> ApprovalBroker:
        return ApprovalBroker(
            transport=transport,
            store=store,
            presenter=presenter,
            timeout=timeout,
            poll_interval=0.01,
        )

    return _make


# ============================================================================
# AUDIT FIXTURES
# ============================================================================


@pytest.fixture
def audit_log_path(tmp_path):
    """
    Provide temporary audit log file for test isolation.

    Returns:
        Path to temporary audit.jsonl file
    """
    return tmp_path / "audit.jsonl"


@pytest.fixture
def audit_logger(audit_log_path):
    return AuditLogger(str(audit_log_path))


# ============================================================================
# GATE FIXTURES
# ============================================================================


@pytest.fixture
def make_gate(resolver, store, audit_logger, queue_transport, make_broker):
    """
    Build a PolicyGate over temporary storage.

    Returns:
        Callable: make(auto_approve_low_risk=False, timeout=1.0, presenter=None,
        default_scope="action") -> PolicyGate
    """

    def _make(
        auto_approve_low_risk: bool = False,
        timeout: float = 1.0,
        presenter=None,
        default_scope: str = "action",
        transport=None,
    ) -> PolicyGate:
        broker = make_broker(transport or queue_transport, timeout=timeout, presenter=presenter)
        return PolicyGate(
            scope_engine=ScopeEngine(default_scope),
            resolver=resolver,
            store=store,
            broker=broker,
            audit=audit_logger,
            auto_approve_low_risk=auto_approve_low_risk,
            show_details=True,
        )

    return _make


@pytest.fixture
def resolving_presenter():
    """
    Presenter that answers every prompt through a given broker.

    Returns:
        Callable: make(approved=True, updated_input=None) -> presenter; the
        presenter's ``broker`` attribute must be set before use
    """
    from approval_gate.approvals.presenter import ApprovalPresenter

    class _Resolving(ApprovalPresenter):
        def __init__(self, approved: bool, updated_input: Any):
            self.approved = approved
            self.updated_input = updated_input
            self.broker: Optional[ApprovalBroker] = None
            self.presented = []

        async def present(self, approval_id, summary, pending):
            self.presented.append((approval_id, summary, pending))
            await self.broker.resolve_externally(
                approval_id, self.approved, updated_input=self.updated_input
            )

        def get_name(self) -> str:
            return "Resolving"

    def _make(approved: bool = True, updated_input: Any = None):
        return _Resolving(approved, updated_input)

    return _make


# ============================================================================
# HELPER UTILITIES
# ============================================================================


def read_audit_log(log_path: Path) -> list[Dict[str, Any]]:
    """
    Read and parse audit log file.

    Args:
        log_path: Path to audit.jsonl file

    Returns:
        List of audit log entries (parsed JSON objects)
    """
    if not log_path.exists():
        return []

    entries = []
    with open(log_path, "r") as f:
        for line in f:
            if line.strip():
                entries.append(json.loads(line))
    return entries


def audit_events(log_path: Path) -> list[str]:
    return [entry["event"] for entry in read_audit_log(log_path)]


__all__ = ["FakeClock", "read_audit_log", "audit_events"]
