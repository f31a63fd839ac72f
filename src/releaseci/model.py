# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional


class EventKind(str, Enum):
    PULL_REQUEST = "pull_request"
    MANUAL_DISPATCH = "workflow_dispatch"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TriggerContext:
    """The triggering event, normalized. Created once per run."""
    event_kind: EventKind
    ref_name: str
    commit_hash: str
    user_tag: Optional[str] = None

    @property
    def has_user_tag(self) -> bool:
        return bool(self.user_tag)

    @property
    def is_pull_request(self) -> bool:
        return self.event_kind is EventKind.PULL_REQUEST or "refs/pull" in self.ref_name


@dataclass(frozen=True)
class ResolvedVersion:
    primary_tag: str
    legacy_tag: str
    commit_short: str
    sanitized_ref: str


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    # when set, the step runs inside this container image instead of the host shell
    image: str | None = None
    volumes: tuple[str, ...] = ()


@dataclass(frozen=True)
class CoverageReport:
    file: str
    label: str


Predicate = Callable[[TriggerContext], bool]


def always(ctx: TriggerContext) -> bool:
    return True


@dataclass
class JobNode:
    """
    A declared job: steps + dependencies + an optional platform axis.

    A node with `publish` set is a publishing job: its body always runs, the
    publish action only when the publish gate allows it.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    platforms: Optional[List[str]] = None
    # template name the platform value is bound to, besides ${platform}
    axis_key: str = "platform"
    when: Predicate = always
    publish: Optional[Callable[..., Dict[str, Any]]] = None

    env: Dict[str, str] = field(default_factory=dict)
    build_args: Dict[str, str] = field(default_factory=dict)
    inputs: list[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    coverage: Optional[CoverageReport] = None

    # a SKIPPED dependency normally skips this node as well
    skipped_satisfies: bool = False
    description: str = ""

    @property
    def is_publishing(self) -> bool:
        return self.publish is not None


@dataclass(frozen=True)
class ArtifactRef:
    producer_instance_id: str
    name: str
    location_handle: Any


@dataclass
class JobInstance:
    """One schedulable execution of a JobNode (post matrix expansion)."""
    node_id: str
    platform_id: Optional[str]
    depends_on: FrozenSet[str]
    steps: list[Step] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    build_args: Dict[str, str] = field(default_factory=dict)
    inputs: list[str] = field(default_factory=list)
    outputs_declared: Dict[str, str] = field(default_factory=dict)

    status: JobStatus = JobStatus.PENDING
    outputs: Dict[str, ArtifactRef] = field(default_factory=dict)
    reason: str = ""
    publish_skipped: bool = False
    error: Optional[str] = None

    @property
    def instance_id(self) -> str:
        if self.platform_id is None:
            return self.node_id
        return f"{self.node_id}[{self.platform_id}]"

    @property
    def outcome(self) -> str:
        """Human readable final outcome, e.g. 'skipped (publish gate)'."""
        if self.status is JobStatus.SUCCEEDED and self.publish_skipped:
            return "skipped (publish gate)"
        if self.reason and self.status in (JobStatus.SKIPPED, JobStatus.CANCELLED):
            return f"{self.status.value} ({self.reason})"
        return self.status.value
