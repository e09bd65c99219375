"""Remembered decisions and the human approval round-trip."""

from .broker import INVALID_MESSAGE, TIMEOUT_MESSAGE, ApprovalBroker, generate_approval_id
from .presenter import ApprovalPresenter, CallbackPresenter, LogPresenter
from .store import ApprovalStore, max_age
from .transports import (
    FileMailboxTransport,
    MailboxTransport,
    QueueTransport,
    RedisMailboxTransport,
    create_transport,
)

__all__ = [
    "ApprovalStore",
    "max_age",
    "ApprovalBroker",
    "generate_approval_id",
    "TIMEOUT_MESSAGE",
    "INVALID_MESSAGE",
    "ApprovalPresenter",
    "LogPresenter",
    "CallbackPresenter",
    "MailboxTransport",
    "FileMailboxTransport",
    "QueueTransport",
    "RedisMailboxTransport",
    "create_transport",
]
