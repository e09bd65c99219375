"""Presentation interface: how a pending approval reaches a human.

Rendering buttons and reporting clicks belongs to the chat integration; the
gate only hands over an approval id and a summary. The integration later
calls ``ApprovalBroker.resolve_externally`` (or the ``resolve`` CLI command).
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from loguru import logger

from ..models import PendingApproval


class ApprovalPresenter(ABC):
    """Abstract base class for approval presenters."""

    @abstractmethod
    async def present(self, approval_id: str, summary: str, pending: PendingApproval) -> None:
        """Show a pending approval to a human.

        Args:
            approval_id: Id the human's answer must be resolved against
            summary: Human-readable description of the request
            pending: Captured request context (channel, thread, user, risk, scope)

        Raises:
            Exception: On delivery failure; the gate then denies
        """

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable presenter name."""


class LogPresenter(ApprovalPresenter):
    """Writes the prompt to the log; useful with the ``resolve`` CLI command."""

    async def present(self, approval_id: str, summary: str, pending: PendingApproval) -> None:
        logger.info(
            f"Approval {approval_id} awaiting decision "
            f"(tool={pending.tool_name}, user={pending.user}, channel={pending.channel}, "
            f"thread={pending.thread_ts})\n{summary}"
        )

    def get_name(self) -> str:
        return "Log"


PresentCallback = Callable[[str, str, PendingApproval], Awaitable[None]]


class CallbackPresenter(ApprovalPresenter):
    """Delegates to an async callable supplied by the chat integration."""

    def __init__(self, callback: PresentCallback, name: Optional[str] = None):
        self._callback = callback
        self._name = name or "Callback"

    async def present(self, approval_id: str, summary: str, pending: PendingApproval) -> None:
        await self._callback(approval_id, summary, pending)

    def get_name(self) -> str:
        return self._name
