"""FastMCP server exposing the ``permission_prompt`` tool to the agent runtime."""

import json
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastmcp import FastMCP
from loguru import logger

from .approvals.transports import RedisMailboxTransport
from .gate import PolicyGate, create_policy_gate
from .models import PermissionRequest
from .redis_client import check_redis_health, close_redis_client

# Constants
SERVER_NAME = "permission-prompt"


async def handle_permission_prompt(
    gate: PolicyGate,
    tool_name: str,
    input: Any,
    channel: Optional[str] = None,
    thread_ts: Optional[str] = None,
    user: Optional[str] = None,
) -> str:
    """
    Run one permission request through the gate.

    Returns:
        JSON-serialized PermissionResponse
    """
    request = PermissionRequest(
        tool_name=tool_name,
        input=input,
        channel=channel,
        thread_ts=thread_ts,
        user=user,
    )
    response = await gate.decide(request)
    return json.dumps(response.to_dict(), default=str)


@asynccontextmanager
async def gate_lifespan(gate: PolicyGate):
    """Log startup state, check Redis when it carries approvals, close it on exit."""
    logger.info(f"Starting {SERVER_NAME} server...")
    logger.info(f"Approval transport: {gate.broker.transport.get_name()}")
    logger.info(f"Approval store: {gate.store.path} ({len(gate.store)} remembered)")
    logger.info(f"Audit logging: {gate.audit.log_path}")

    uses_redis = isinstance(gate.broker.transport, RedisMailboxTransport)
    if uses_redis:
        healthy, message = await check_redis_health()
        if healthy:
            logger.info(message)
        else:
            logger.warning(f"{message}; approvals will be denied until Redis is reachable")

    try:
        yield  # Server runs here
    finally:
        logger.info(f"{SERVER_NAME} shutting down...")
        if uses_redis:
            await close_redis_client()


def build_server(gate_factory: Callable[[], PolicyGate] = create_policy_gate) -> FastMCP:
    """
    Create the MCP server with one PolicyGate owned by the server instance.

    Args:
        gate_factory: Builds the gate (defaults to ``create_policy_gate``)

    Returns:
        Configured FastMCP instance
    """
    gate = gate_factory()
    mcp = FastMCP(name=SERVER_NAME, lifespan=lambda app: gate_lifespan(gate))

    @mcp.tool()
    async def permission_prompt(
        tool_name: str,
        input: Any,
        channel: Optional[str] = None,
        thread_ts: Optional[str] = None,
        user: Optional[str] = None,
    ) -> str:
        """
        Request user permission for a tool execution.

        Args:
            tool_name: Name of the tool requesting permission
            input: Input parameters for the tool
            channel: Channel where the request originated
            thread_ts: Thread timestamp for the request
            user: User who initiated the request

        Returns:
            JSON object with ``behavior`` (allow/deny), optional
            ``updatedInput`` and ``message``
        """
        return await handle_permission_prompt(
            gate, tool_name, input, channel=channel, thread_ts=thread_ts, user=user
        )

    return mcp
