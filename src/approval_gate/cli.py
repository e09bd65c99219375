"""Command line entry point: run the MCP server or administer approvals."""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger

from .approvals.broker import ApprovalBroker
from .approvals.store import ApprovalStore
from .approvals.transports import RedisMailboxTransport, create_transport
from .audit import AuditLogger
from .config import Config
from .redis_client import close_redis_client

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure loguru handlers.

    Console output goes to stderr; stdout carries the MCP stdio channel.
    """
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, format=LOG_FORMAT, level=level or Config.LOG_LEVEL)

    log_file = log_file if log_file is not None else Config.LOG_FILE
    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level="DEBUG",
        )


def _cmd_serve(args: argparse.Namespace) -> int:
    from .server import build_server

    Config.validate()
    mcp = build_server()
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0


async def _resolve(approval_id: str, approved: bool, updated_input) -> None:
    broker = ApprovalBroker(
        transport=create_transport(),
        store=ApprovalStore(Config.APPROVALS_FILE),
    )
    logger.debug(f"Resolving {approval_id} via {broker.transport.get_name()}")
    try:
        await broker.resolve_externally(approval_id, approved, updated_input=updated_input)
    finally:
        if isinstance(broker.transport, RedisMailboxTransport):
            await close_redis_client()


def _cmd_resolve(args: argparse.Namespace) -> int:
    updated_input = None
    if args.updated_input is not None:
        try:
            updated_input = json.loads(args.updated_input)
        except json.JSONDecodeError as e:
            logger.error(f"--updated-input is not valid JSON: {e}")
            return 2

    asyncio.run(_resolve(args.approval_id, args.allow, updated_input))
    print(f"{'Approved' if args.allow else 'Denied'} {args.approval_id}")
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    store = ApprovalStore(Config.APPROVALS_FILE)
    approvals = store.list()
    if args.json:
        print(json.dumps([approval.to_dict() for approval in approvals], indent=2))
        return 0

    if not approvals:
        print("No remembered approvals")
        return 0

    for approval in sorted(approvals, key=lambda a: a.timestamp, reverse=True):
        when = datetime.fromtimestamp(approval.timestamp, timezone.utc).isoformat(timespec="seconds")
        print(
            f"{approval.behavior.value:<5} {approval.tool_name} "
            f"user={approval.user} channel={approval.channel} "
            f"{approval.scope_key} risk={approval.risk_level.value} at={when}"
        )
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    store = ApprovalStore(Config.APPROVALS_FILE)
    removed = store.clear()
    AuditLogger(Config.AUDIT_LOG_PATH).log_approvals_cleared(removed=removed, cleared_by="cli")
    print(f"Removed {removed} remembered approval(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="approval-gate",
        description="Permission gate for agent tool use",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the permission_prompt MCP server over stdio
  approval-gate serve

  # Answer a pending prompt from another process
  approval-gate resolve 1718000000000_a1b2c3d4e --allow

  # Inspect or forget remembered decisions
  approval-gate list
  approval-gate clear
        """,
    )
    parser.add_argument("--log-level", type=str, help="Console log level (default: LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the MCP server over stdio (default)")
    serve.set_defaults(func=_cmd_serve)

    resolve = subparsers.add_parser("resolve", help="Deliver a human decision for an approval id")
    resolve.add_argument("approval_id", type=str, help="Approval id shown in the prompt")
    decision = resolve.add_mutually_exclusive_group(required=True)
    decision.add_argument("--allow", dest="allow", action="store_true", help="Approve the request")
    decision.add_argument("--deny", dest="allow", action="store_false", help="Deny the request")
    resolve.add_argument(
        "--updated-input",
        type=str,
        help="Replacement tool input as JSON",
    )
    resolve.set_defaults(func=_cmd_resolve)

    list_cmd = subparsers.add_parser("list", help="Show remembered decisions")
    list_cmd.add_argument("--json", action="store_true", help="Print raw JSON")
    list_cmd.set_defaults(func=_cmd_list)

    clear = subparsers.add_parser("clear", help="Forget every remembered decision")
    clear.set_defaults(func=_cmd_clear)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)

    func = getattr(args, "func", _cmd_serve)
    try:
        return func(args)
    except ValueError as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
