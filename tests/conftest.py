from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from releaseci.executor import ExecutionRequest, ExecutionResult
from releaseci.model import EventKind
from releaseci.services import Services
from releaseci.trigger import resolve_trigger


class FakeExecutor:
    """
    Records executions; fails the instance ids in `fail`.

    Declared outputs are produced as bytes naming the producer.
    """

    def __init__(
        self,
        fail: tuple[str, ...] = (),
        delay: float = 0.0,
        on_execute: Optional[Callable[[ExecutionRequest], None]] = None,
    ):
        self.fail = set(fail)
        self.delay = delay
        self.on_execute = on_execute
        self.executed: List[str] = []
        self.requests: Dict[str, ExecutionRequest] = {}
        self.events: List[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        with self._lock:
            self.executed.append(request.instance_id)
            self.requests[request.instance_id] = request
            self.events.append(("start", request.instance_id))
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            if self.on_execute is not None:
                self.on_execute(request)
            if self.delay:
                time.sleep(self.delay)
            if request.instance_id in self.fail:
                return ExecutionResult(exit_code=3, failed_step="boom", failed_cmd="false", stderr="boom")
            return ExecutionResult(
                exit_code=0,
                outputs={name: f"{request.instance_id}:{name}".encode() for name in request.outputs},
            )
        finally:
            with self._lock:
                self.running -= 1
                self.events.append(("end", request.instance_id))


class FakeRegistry:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.pushes: List[tuple[str, tuple[str, ...], dict]] = []

    def push(self, image_ref, tags, labels):
        self.pushes.append((image_ref, tuple(tags), dict(labels)))
        return self.ok


class FakeReleases:
    def __init__(self):
        self.created: List[dict] = []
        self.uploads: List[tuple[str, object, str, str]] = []

    def create_release(self, tag_name, name, draft=False, prerelease=True):
        self.created.append({"tag_name": tag_name, "name": name, "draft": draft, "prerelease": prerelease})
        return f"https://uploads.example/releases/{tag_name}/assets"

    def upload_asset(self, upload_url, asset_path, asset_name, content_type):
        self.uploads.append((upload_url, asset_path, asset_name, content_type))
        return True


class FakeCoverage:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.reports: List[tuple[str, str]] = []

    def report_coverage(self, file_path, label):
        self.reports.append((str(file_path), label))
        if self.error is not None:
            raise self.error
        return True


class FakeRedis:
    """The handful of redis commands the shared groups use, over dicts."""

    def __init__(self):
        self.strings = {}
        self.hashes = {}
        self.expiries = {}

    def get(self, key):
        return self.strings.get(key)

    def set(self, key, value, ex=None):
        self.strings[key] = value
        self.expiries[key] = ex
        return True

    def delete(self, *keys):
        for key in keys:
            self.strings.pop(key, None)
            self.hashes.pop(key, None)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hdel(self, key, field):
        self.hashes.get(key, {}).pop(field, None)

    def expire(self, key, seconds):
        self.expiries[key] = seconds


@pytest.fixture
def services():
    return Services(registry=FakeRegistry(), releases=FakeReleases(), coverage=FakeCoverage())


@pytest.fixture
def make_trigger():
    def _make(event=EventKind.MANUAL_DISPATCH, ref="refs/heads/feature/x", sha="abcdef0123456789", tag=None):
        return resolve_trigger(event, ref, sha, tag)

    return _make
