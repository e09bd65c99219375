"""Single decision entry point for agent tool-use requests.

Pipeline (first decisive step wins):
1. Classify the request (risk level and effective scope)
2. Auto-approve low-risk requests when the global switch is on
3. Local policy pre-approval / blocking for the working directory
4. Remembered human decision from the approval store
5. Human review through the approval broker, remembered afterwards

Any unexpected error denies the request. Local policy errors are the one
exception: they fall through to steps 4 and 5.
"""

from dataclasses import replace
from typing import Callable, Optional

from loguru import logger

from .approvals.broker import TIMEOUT_MESSAGE, ApprovalBroker
from .approvals.presenter import ApprovalPresenter
from .approvals.store import ApprovalStore
from .approvals.transports import MailboxTransport, create_transport
from .audit import AuditEvent, AuditLogger
from .config import Config
from .models import (
    Behavior,
    PermissionRequest,
    PermissionResponse,
    RiskLevel,
)
from .policy.formatter import render_prompt
from .policy.local_config import ConfigResolver, command_text
from .policy.scope import ScopeEngine

UNKNOWN = "unknown"
ERROR_MESSAGE = "Error occurred while requesting permission"

# PERMISSION_CONTEXT field -> PermissionRequest attribute
_CONTEXT_FIELDS = {
    "channel": "channel",
    "threadTs": "thread_ts",
    "user": "user",
    "workingDirectory": "working_directory",
    "requestId": "request_id",
}


def with_request_context(request: PermissionRequest) -> PermissionRequest:
    """
    Fill missing request fields from the runtime-provided context.

    Fields already set on the request take precedence.
    """
    context = Config.request_context()
    updates = {}
    for context_field, attribute in _CONTEXT_FIELDS.items():
        value = context.get(context_field)
        if getattr(request, attribute) is None and isinstance(value, str) and value:
            updates[attribute] = value
    return replace(request, **updates) if updates else request


class PolicyGate:
    """
    Orchestrates classification, local policy, remembered decisions and
    human review into one allow/deny decision.

    All collaborators are injected; ``create_policy_gate`` builds the
    default set from Config.
    """

    def __init__(
        self,
        scope_engine: ScopeEngine,
        resolver: ConfigResolver,
        store: ApprovalStore,
        broker: ApprovalBroker,
        audit: Optional[AuditLogger] = None,
        auto_approve_low_risk: Optional[bool] = None,
        show_details: Optional[bool] = None,
    ):
        self.scope_engine = scope_engine
        self.resolver = resolver
        self.store = store
        self.broker = broker
        self.audit = audit or AuditLogger(Config.AUDIT_LOG_PATH)
        self.auto_approve_low_risk = (
            auto_approve_low_risk
            if auto_approve_low_risk is not None
            else Config.AUTO_APPROVE_LOW_RISK
        )
        self.show_details = show_details if show_details is not None else Config.SHOW_DETAILS

    async def decide(self, request: PermissionRequest) -> PermissionResponse:
        """
        Decide whether the agent may run a tool.

        Never raises; internal faults produce a denial.

        Args:
            request: Inbound permission request

        Returns:
            PermissionResponse with behavior allow or deny
        """
        try:
            return await self._decide(with_request_context(request))
        except Exception as e:
            logger.error(f"Error handling permission prompt for {request.tool_name}: {e}")
            self.audit.log_decision(
                AuditEvent.GATE_ERROR,
                tool_name=request.tool_name,
                tool_input=request.input,
                user=request.user,
                channel=request.channel,
                behavior=Behavior.DENY.value,
                request_id=request.request_id,
                error=str(e),
            )
            return PermissionResponse(behavior=Behavior.DENY, message=ERROR_MESSAGE)

    async def _decide(self, request: PermissionRequest) -> PermissionResponse:
        tool_name = request.tool_name
        tool_input = request.input
        user = request.user or UNKNOWN
        channel = request.channel or UNKNOWN

        logger.info(f"Permission prompt for {tool_name} (user={user}, channel={channel})")

        formatted = self.scope_engine.classify(tool_name, tool_input)
        scope = formatted.scope
        risk_level = formatted.risk_level

        def _audit(event: AuditEvent, behavior: Behavior, **details) -> None:
            self.audit.log_decision(
                event,
                tool_name=tool_name,
                tool_input=tool_input,
                user=user,
                channel=channel,
                behavior=behavior.value,
                request_id=request.request_id,
                scope=scope.value,
                risk_level=risk_level.value,
                **details,
            )

        # ====================================================================
        # Low-risk auto-approval
        # ====================================================================
        if self.auto_approve_low_risk and risk_level == RiskLevel.LOW:
            logger.info(f"Auto-approving low-risk operation: {tool_name}")
            _audit(AuditEvent.AUTO_APPROVED_LOW_RISK, Behavior.ALLOW)
            return PermissionResponse(
                behavior=Behavior.ALLOW,
                updated_input=tool_input,
                message="Auto-approved (low risk operation)",
            )

        # ====================================================================
        # Local policy
        # ====================================================================
        if request.working_directory:
            response = await self._check_local_policy(request, _audit)
            if response is not None:
                return response

        # ====================================================================
        # Remembered decisions
        # ====================================================================
        existing = self.store.lookup(tool_name, user, channel, tool_input, scope)
        if existing is not None:
            logger.info(
                f"Using existing approval for {tool_name}: {existing.behavior.value} "
                f"(scope={existing.scope.value})"
            )
            _audit(
                AuditEvent.REMEMBERED_DECISION,
                existing.behavior,
                stored_scope=existing.scope.value,
            )
            return PermissionResponse(
                behavior=existing.behavior,
                updated_input=tool_input if existing.behavior == Behavior.ALLOW else None,
                message=f"Using previous approval ({existing.behavior.value})",
            )

        # ====================================================================
        # Human review
        # ====================================================================
        pending = await self.broker.submit(
            tool_name,
            user,
            channel,
            tool_input,
            risk_level,
            scope,
            thread_ts=request.thread_ts,
            request_id=request.request_id,
        )
        self.audit.log_approval_requested(
            tool_name=tool_name,
            approval_id=pending.approval_id,
            user=user,
            channel=channel,
            scope=scope.value,
            risk_level=risk_level.value,
            request_id=request.request_id,
        )

        summary = render_prompt(
            tool_name, formatted, user=request.user, show_details=self.show_details
        )
        response = await self.broker.request_decision(pending, summary)

        # Only a human answer is remembered
        if not response.decided:
            event = (
                AuditEvent.APPROVAL_TIMEOUT
                if response.message == TIMEOUT_MESSAGE
                else AuditEvent.APPROVAL_INVALID
            )
            _audit(event, Behavior.DENY, approval_id=pending.approval_id)
            return response

        self.store.record(
            tool_name=tool_name,
            user=user,
            channel=channel,
            tool_input=tool_input,
            scope=scope,
            risk_level=risk_level,
            behavior=response.behavior,
        )
        _audit(
            AuditEvent.APPROVAL_GRANTED if response.allowed else AuditEvent.APPROVAL_DENIED,
            response.behavior,
            approval_id=pending.approval_id,
        )
        return response

    async def _check_local_policy(
        self, request: PermissionRequest, audit_decision: Callable[..., None]
    ) -> Optional[PermissionResponse]:
        """Local policy verdict, or None when policy is silent or failed."""
        try:
            result = await self.resolver.is_pre_approved(
                command_text(request.input),
                request.tool_name,
                request.working_directory,
            )
        except Exception as e:
            logger.error(f"Error checking local config for {request.tool_name}: {e}")
            return None

        if not result.is_decisive:
            return None

        match_type = result.match_type.value if result.match_type else "unknown"
        if result.is_approved:
            logger.info(f"Pre-approved by local config ({match_type} match): {request.tool_name}")
            audit_decision(
                AuditEvent.PRE_APPROVED,
                Behavior.ALLOW,
                match_type=match_type,
                config_path=result.config_path,
            )
            return PermissionResponse(
                behavior=Behavior.ALLOW,
                updated_input=request.input,
                message=f"Auto-approved by local config ({match_type} match)",
            )

        logger.warning(f"Blocked by local config ({match_type} match): {request.tool_name}")
        audit_decision(
            AuditEvent.BLOCKED_BY_CONFIG,
            Behavior.DENY,
            match_type=match_type,
            config_path=result.config_path,
        )
        return PermissionResponse(
            behavior=Behavior.DENY,
            message=f"Blocked by local config ({match_type} match)",
        )


def create_policy_gate(
    transport: Optional[MailboxTransport] = None,
    presenter: Optional[ApprovalPresenter] = None,
) -> PolicyGate:
    """
    Build a PolicyGate wired from Config.

    Args:
        transport: Mailbox transport (defaults to Config.APPROVAL_TRANSPORT)
        presenter: Presentation layer (defaults to logging the prompt)

    Returns:
        Ready-to-use PolicyGate
    """
    store = ApprovalStore(Config.APPROVALS_FILE)
    broker = ApprovalBroker(
        transport=transport or create_transport(),
        store=store,
        presenter=presenter,
    )
    return PolicyGate(
        scope_engine=ScopeEngine(),
        resolver=ConfigResolver(),
        store=store,
        broker=broker,
        audit=AuditLogger(Config.AUDIT_LOG_PATH),
    )
