"""Request/await protocol between the gate and an out-of-process decision maker.

Protocol:
1. ``submit`` assigns an approval id and publishes the request context
2. the presenter shows the request to a human
3. ``await_with_timeout`` polls the transport mailbox every poll interval
4. the chat integration calls ``resolve_externally``, which records the
   decision in the store and drops it into the mailbox
5. the first payload read completes the wait; a timeout yields a denial
"""

import asyncio
import time
import uuid
from typing import Any, Dict, Optional

from loguru import logger

from ..config import Config
from ..models import (
    ApprovalScope,
    Behavior,
    PendingApproval,
    PermissionResponse,
    RiskLevel,
)
from .presenter import ApprovalPresenter, LogPresenter
from .store import ApprovalStore
from .transports import MailboxTransport

TIMEOUT_MESSAGE = "Permission request timed out"
INVALID_MESSAGE = "Invalid approval response format"
DECISION_VALUES = {behavior.value for behavior in Behavior}


def generate_approval_id() -> str:
    """Unique id of the form ``<epoch_ms>_<random9>``."""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ApprovalBroker:
    """
    Bridges the waiting gate and the process that hears the human's answer.

    Pending state lives here only between ``submit`` and resolution or
    timeout; the entry is dropped as soon as either happens, so late
    mailbox writes for the same id are ignored.
    """

    def __init__(
        self,
        transport: MailboxTransport,
        store: ApprovalStore,
        presenter: Optional[ApprovalPresenter] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.transport = transport
        self.store = store
        self.presenter = presenter or LogPresenter()
        self.timeout = timeout if timeout is not None else Config.APPROVAL_TIMEOUT
        self.poll_interval = (
            poll_interval if poll_interval is not None else Config.APPROVAL_POLL_INTERVAL
        )
        self._pending: Dict[str, PendingApproval] = {}

    def is_pending(self, approval_id: str) -> bool:
        return approval_id in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def submit(
        self,
        tool_name: str,
        user: str,
        channel: str,
        tool_input: Any,
        risk_level: RiskLevel,
        scope: ApprovalScope,
        thread_ts: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> PendingApproval:
        """
        Register a new pending approval and publish its context.

        ``thread_ts`` travels with the context so the prompt can be posted
        into the requesting thread.

        Returns:
            PendingApproval carrying the new approval id
        """
        pending = PendingApproval(
            approval_id=generate_approval_id(),
            tool_name=tool_name,
            user=user,
            channel=channel,
            input=tool_input,
            risk_level=RiskLevel(risk_level),
            scope=ApprovalScope(scope),
            thread_ts=thread_ts,
            request_id=request_id,
        )
        self._pending[pending.approval_id] = pending
        try:
            await self.transport.open(pending)
        except Exception:
            self._pending.pop(pending.approval_id, None)
            raise
        logger.debug(f"Submitted approval {pending.approval_id} via {self.transport.get_name()}")
        return pending

    async def await_with_timeout(self, approval_id: str) -> PermissionResponse:
        """
        Poll the mailbox until a decision arrives or the timeout elapses.

        Read errors are logged and polling continues. Never raises for a
        timeout; returns a denial instead.

        Args:
            approval_id: Id returned by ``submit``

        Returns:
            The human's decision (``decided`` set), or an undecided denial
            on timeout or a malformed payload
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            while True:
                try:
                    payload = await self.transport.poll(approval_id)
                except Exception as e:
                    logger.debug(f"Error polling approval mailbox for {approval_id}: {e}")
                    payload = None

                if payload is not None:
                    return self._complete(approval_id, payload)

                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(self.poll_interval, remaining))
        finally:
            self._pending.pop(approval_id, None)
            await self._discard(approval_id)

        logger.warning(f"Approval {approval_id} timed out after {self.timeout}s")
        return PermissionResponse(behavior=Behavior.DENY, message=TIMEOUT_MESSAGE)

    def _complete(self, approval_id: str, payload: Any) -> PermissionResponse:
        """Parse a mailbox payload; only a well-formed one counts as decided."""
        self._pending.pop(approval_id, None)
        if not isinstance(payload, dict) or payload.get("behavior") not in DECISION_VALUES:
            logger.warning(f"Malformed decision payload for {approval_id}: {payload!r}")
            return PermissionResponse(behavior=Behavior.DENY, message=INVALID_MESSAGE)
        response = PermissionResponse.from_dict(payload)
        response.decided = True
        logger.info(f"Approval {approval_id} resolved: {response.behavior.value}")
        return response

    async def _discard(self, approval_id: str) -> None:
        try:
            await self.transport.discard(approval_id)
        except Exception as e:
            logger.debug(f"Failed to clean up mailbox for {approval_id}: {e}")

    async def request_decision(self, pending: PendingApproval, summary: str) -> PermissionResponse:
        """
        Present a submitted approval and wait for the answer.

        Raises:
            Exception: If the presenter fails (the pending entry is discarded)
        """
        try:
            await self.presenter.present(pending.approval_id, summary, pending)
        except Exception:
            self._pending.pop(pending.approval_id, None)
            await self._discard(pending.approval_id)
            raise
        return await self.await_with_timeout(pending.approval_id)

    async def resolve_externally(
        self,
        approval_id: str,
        approved: bool,
        updated_input: Any = None,
    ) -> PermissionResponse:
        """
        Deliver a human decision for ``approval_id``.

        Records the decision in the store when the request context is known
        (locally or through the transport), then writes the mailbox. Unknown
        ids still get a mailbox write, which no broker will read.

        Args:
            approval_id: Id shown to the human
            approved: True to allow, False to deny
            updated_input: Replacement tool input chosen by the human

        Returns:
            The response written to the mailbox
        """
        response = PermissionResponse(
            behavior=Behavior.ALLOW if approved else Behavior.DENY,
            updated_input=updated_input,
            message="Approved by user" if approved else "Denied by user",
        )

        pending = self._pending.get(approval_id)
        if pending is None:
            pending = await self.transport.load_pending(approval_id)

        if pending is not None:
            self.store.record(
                tool_name=pending.tool_name,
                user=pending.user,
                channel=pending.channel,
                tool_input=pending.input,
                scope=pending.scope,
                risk_level=pending.risk_level,
                behavior=response.behavior,
            )
        else:
            logger.warning(f"No pending context for approval {approval_id}; decision not stored")

        try:
            await self.transport.deliver(approval_id, response.to_dict())
            logger.debug(f"Wrote decision for {approval_id} (approved={approved})")
        except Exception as e:
            logger.error(f"Failed to write approval mailbox for {approval_id}: {e}")
        return response
