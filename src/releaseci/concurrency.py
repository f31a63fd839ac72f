from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import redis

from .model import EventKind, TriggerContext


@dataclass
class RunHandle:
    """
    Cancel token for one pipeline run.

    `remote_cancel`, when set, is asked for a cancel reason each time the
    handle is checked; it lets another process cancel this run.
    """
    group: str
    trigger: TriggerContext
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    cancel_reason: str = ""
    remote_cancel: Optional[Callable[[], Optional[str]]] = field(default=None, repr=False)

    def cancel(self, reason: str = "run cancelled") -> None:
        if not self._cancelled.is_set():
            self.cancel_reason = reason
            self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if not self._cancelled.is_set() and self.remote_cancel is not None:
            reason = self.remote_cancel()
            if reason:
                self.cancel(reason)
        return self._cancelled.is_set()


def group_key(ctx: TriggerContext, prefix: str = "releaseci") -> str:
    return f"{prefix}-{ctx.ref_name}"


def supersedes(new: TriggerContext, old: TriggerContext) -> bool:
    # manual dispatch runs never cancel and are never cancelled
    return new.event_kind is EventKind.PULL_REQUEST and old.event_kind is EventKind.PULL_REQUEST


class ConcurrencyGroups:
    """
    In-flight runs per group (`<prefix>-<ref>`), for runs in one process.

    A new pull request run cancels every in-flight pull request run of its
    group. Manual dispatch runs in the same group are left alone.
    """

    def __init__(self, prefix: str = "releaseci"):
        self.prefix = prefix
        self._lock = threading.Lock()
        self._active: Dict[str, List[RunHandle]] = {}

    def start(self, ctx: TriggerContext) -> RunHandle:
        key = group_key(ctx, self.prefix)
        handle = RunHandle(group=key, trigger=ctx)
        with self._lock:
            running = self._active.setdefault(key, [])
            for previous in running:
                if supersedes(ctx, previous.trigger):
                    previous.cancel(f"superseded by run {handle.run_id}")
            running.append(handle)
        return handle

    def finish(self, handle: RunHandle) -> None:
        with self._lock:
            running = self._active.get(handle.group, [])
            if handle in running:
                running.remove(handle)
            if not running:
                self._active.pop(handle.group, None)

    def active(self, ctx: TriggerContext) -> List[RunHandle]:
        with self._lock:
            return list(self._active.get(group_key(ctx, self.prefix), []))


# ----------------------------------------------------------------------
# Shared registry (runs in separate processes)
# ----------------------------------------------------------------------

def runs_key(group: str) -> str:
    return f"releaseci:runs:{group}"


def cancel_key(run_id: str) -> str:
    return f"releaseci:cancel:{run_id}"


class RedisConcurrencyGroups:
    """
    Concurrency groups shared through Redis, so each `releaseci run`
    process sees the others:

        releaseci:runs:<group>      hash run_id -> event kind
        releaseci:cancel:<run_id>   cancel reason, read by the cancelled run

    Entries expire after `lease_seconds` so a crashed run does not stay
    in its group forever.
    """

    def __init__(self, client, prefix: str = "releaseci", lease_seconds: int = 600):
        self.r = client
        self.prefix = prefix
        self.lease_seconds = lease_seconds

    @classmethod
    def from_url(cls, url: str, prefix: str = "releaseci", lease_seconds: int = 600) -> "RedisConcurrencyGroups":
        return cls(redis.from_url(url, decode_responses=True), prefix, lease_seconds)

    def _remote_cancel(self, run_id: str) -> Callable[[], Optional[str]]:
        def _check() -> Optional[str]:
            return self.r.get(cancel_key(run_id))
        return _check

    def start(self, ctx: TriggerContext) -> RunHandle:
        key = group_key(ctx, self.prefix)
        handle = RunHandle(group=key, trigger=ctx)
        handle.remote_cancel = self._remote_cancel(handle.run_id)

        if ctx.event_kind is EventKind.PULL_REQUEST:
            for run_id, kind in self.r.hgetall(runs_key(key)).items():
                if kind == EventKind.PULL_REQUEST.value:
                    self.r.set(cancel_key(run_id), f"superseded by run {handle.run_id}", ex=self.lease_seconds)

        self.r.hset(runs_key(key), handle.run_id, ctx.event_kind.value)
        self.r.expire(runs_key(key), self.lease_seconds)
        return handle

    def finish(self, handle: RunHandle) -> None:
        self.r.hdel(runs_key(handle.group), handle.run_id)
        self.r.delete(cancel_key(handle.run_id))

    def active(self, ctx: TriggerContext) -> List[str]:
        return sorted(self.r.hgetall(runs_key(group_key(ctx, self.prefix))))


def groups_from_settings(settings) -> ConcurrencyGroups | RedisConcurrencyGroups:
    """Shared Redis groups when RELEASECI_REDIS_URL is set, else groups local to this process."""
    if settings.redis_url:
        return RedisConcurrencyGroups.from_url(settings.redis_url, settings.concurrency_prefix, settings.lease_seconds)
    return ConcurrencyGroups(settings.concurrency_prefix)
