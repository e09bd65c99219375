"""Mailbox transports carrying decisions from the resolver to the waiting broker.

The process that waits for a decision and the process that receives the
human's answer usually share nothing but a filesystem or a message bus.
Transports hide which one is used:

- FileMailboxTransport: one JSON file per approval id (no shared memory)
- QueueTransport: in-process asyncio queues (same-process deployments)
- RedisMailboxTransport: Redis lists (message-bus deployments)
"""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger
from redis import asyncio as aioredis

from ..config import Config
from ..models import PendingApproval
from ..redis_client import get_redis_client


class MailboxTransport(ABC):
    """Abstract base class for decision mailboxes.

    All methods are async so network-backed transports fit the same contract.
    """

    @abstractmethod
    async def open(self, pending: PendingApproval) -> None:
        """Publish the context of a new pending approval."""

    @abstractmethod
    async def poll(self, approval_id: str) -> Optional[Dict[str, Any]]:
        """Consume the decision for ``approval_id`` if one has arrived.

        Returns:
            Decision payload, or None if nothing is waiting yet
        """

    @abstractmethod
    async def deliver(self, approval_id: str, payload: Dict[str, Any]) -> None:
        """Place a decision in the mailbox for ``approval_id``."""

    @abstractmethod
    async def load_pending(self, approval_id: str) -> Optional[PendingApproval]:
        """Context published by ``open``, or None if unknown or discarded."""

    @abstractmethod
    async def discard(self, approval_id: str) -> None:
        """Remove every trace of ``approval_id`` (mailbox and context)."""

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable transport name."""


class FileMailboxTransport(MailboxTransport):
    """
    Mailbox files in a shared directory.

    ``approval_<id>.json`` holds the decision and
    ``approval_<id>.request.json`` the pending context.
    """

    def __init__(self, mailbox_dir: Optional[str] = None):
        self.mailbox_dir = Path(mailbox_dir or Config.MAILBOX_DIR)

    def mailbox_path(self, approval_id: str) -> Path:
        return self.mailbox_dir / f"approval_{approval_id}.json"

    def request_path(self, approval_id: str) -> Path:
        return self.mailbox_dir / f"approval_{approval_id}.request.json"

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Failed to delete mailbox file {path}: {e}")

    async def open(self, pending: PendingApproval) -> None:
        self.mailbox_dir.mkdir(parents=True, exist_ok=True)
        path = self.request_path(pending.approval_id)
        path.write_text(json.dumps(pending.to_dict(), default=str), encoding="utf-8")

    async def poll(self, approval_id: str) -> Optional[Dict[str, Any]]:
        path = self.mailbox_path(approval_id)
        if not path.exists():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        self._unlink(path)
        return payload

    async def deliver(self, approval_id: str, payload: Dict[str, Any]) -> None:
        self.mailbox_dir.mkdir(parents=True, exist_ok=True)
        path = self.mailbox_path(approval_id)
        # Write then rename so a poll never reads a half-written file
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, default=str), encoding="utf-8")
        tmp_path.replace(path)

    async def load_pending(self, approval_id: str) -> Optional[PendingApproval]:
        path = self.request_path(approval_id)
        try:
            return PendingApproval.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable pending approval context {path}: {e}")
            return None

    async def discard(self, approval_id: str) -> None:
        self._unlink(self.request_path(approval_id))
        self._unlink(self.mailbox_path(approval_id))

    def get_name(self) -> str:
        return "File Mailbox"


class QueueTransport(MailboxTransport):
    """In-process mailboxes backed by asyncio queues."""

    def __init__(self):
        self._queues: Dict[str, asyncio.Queue] = {}
        self._pending: Dict[str, PendingApproval] = {}

    async def open(self, pending: PendingApproval) -> None:
        self._pending[pending.approval_id] = pending
        self._queues[pending.approval_id] = asyncio.Queue()

    async def poll(self, approval_id: str) -> Optional[Dict[str, Any]]:
        queue = self._queues.get(approval_id)
        if queue is None:
            return None
        try:
            return queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def deliver(self, approval_id: str, payload: Dict[str, Any]) -> None:
        queue = self._queues.get(approval_id)
        if queue is None:
            # Nobody waits on unknown or discarded ids
            logger.debug(f"Dropping decision for unknown approval {approval_id}")
            return
        queue.put_nowait(payload)

    async def load_pending(self, approval_id: str) -> Optional[PendingApproval]:
        return self._pending.get(approval_id)

    async def discard(self, approval_id: str) -> None:
        self._pending.pop(approval_id, None)
        self._queues.pop(approval_id, None)

    def get_name(self) -> str:
        return "In-Process Queue"


class RedisMailboxTransport(MailboxTransport):
    """
    Redis-backed mailboxes for deployments that share a message bus.

    Keys:
    - ``approval:mailbox:<id>``: list of decision payloads (LPUSH/RPOP)
    - ``approval:pending:<id>``: pending context JSON

    Both keys expire after ``ttl_seconds`` so abandoned approvals clean up.
    """

    MAILBOX_PREFIX = "approval:mailbox:"
    PENDING_PREFIX = "approval:pending:"

    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        ttl_seconds: Optional[float] = None,
    ):
        self._redis_client = redis
        # SETEX rejects a zero TTL
        self.ttl_seconds = max(1, math.ceil(ttl_seconds or Config.APPROVAL_TIMEOUT))

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis_client is None:
            self._redis_client = await get_redis_client()
        return self._redis_client

    async def open(self, pending: PendingApproval) -> None:
        redis = await self._get_redis()
        await redis.setex(
            f"{self.PENDING_PREFIX}{pending.approval_id}",
            self.ttl_seconds,
            json.dumps(pending.to_dict(), default=str),
        )

    async def poll(self, approval_id: str) -> Optional[Dict[str, Any]]:
        redis = await self._get_redis()
        raw = await redis.rpop(f"{self.MAILBOX_PREFIX}{approval_id}")
        if raw is None:
            return None
        return json.loads(raw)

    async def deliver(self, approval_id: str, payload: Dict[str, Any]) -> None:
        redis = await self._get_redis()
        key = f"{self.MAILBOX_PREFIX}{approval_id}"
        await redis.lpush(key, json.dumps(payload, default=str))
        await redis.expire(key, self.ttl_seconds)

    async def load_pending(self, approval_id: str) -> Optional[PendingApproval]:
        redis = await self._get_redis()
        raw = await redis.get(f"{self.PENDING_PREFIX}{approval_id}")
        if raw is None:
            return None
        try:
            return PendingApproval.from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable pending approval context for {approval_id}: {e}")
            return None

    async def discard(self, approval_id: str) -> None:
        redis = await self._get_redis()
        await redis.delete(
            f"{self.PENDING_PREFIX}{approval_id}",
            f"{self.MAILBOX_PREFIX}{approval_id}",
        )

    def get_name(self) -> str:
        return "Redis Mailbox"


def create_transport(name: Optional[str] = None) -> MailboxTransport:
    """
    Build the transport named in configuration.

    Args:
        name: ``file``, ``queue`` or ``redis`` (defaults to Config.APPROVAL_TRANSPORT)

    Raises:
        ValueError: If the name is unknown
    """
    name = (name or Config.APPROVAL_TRANSPORT).strip().lower()
    if name == "file":
        return FileMailboxTransport()
    if name == "queue":
        return QueueTransport()
    if name == "redis":
        return RedisMailboxTransport()
    raise ValueError(f"Unknown approval transport: {name}")
