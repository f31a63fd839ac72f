# runner.py
from __future__ import annotations

import runpy
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Deque, Dict, List, Optional, Tuple

from . import gate
from .actions import ActionContext
from .artifacts import ArtifactRelay, DirectoryStore
from .concurrency import ConcurrencyGroups, RedisConcurrencyGroups, RunHandle, groups_from_settings
from .dag import build_dag, check_inputs, topo_levels
from .errors import TOOL_HINTS, CIError, ConfigurationError, StepFailure
from .executor import ExecutionRequest, JobExecutor
from .matrix import expand
from .model import JobInstance, JobNode, JobStatus, ResolvedVersion, TriggerContext
from .services import Services
from .settings import Settings, default_workers
from .ui.console import get_console
from .version import DEFAULT_VERSION_ARG, build_args, resolve_version, template_params


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[JobNode]:
    return read_workflow(path)[0]


def read_workflow(path: str | Path) -> Tuple[List[JobNode], str]:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[JobNode]
      - JOBS = [JobNode, ...]
    and may set VERSION_ARG, the build arg carrying the primary tag.
    Returns (jobs, version_arg).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ConfigurationError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"releaseci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, JobNode) for j in jobs):
        raise ConfigurationError(
            "Workflow must return/define a List[JobNode]. "
            "Define workflow() -> List[JobNode] or JOBS = [JobNode, ...].",
            path=str(wf_path),
        )

    version_arg = globals_dict.get("VERSION_ARG", DEFAULT_VERSION_ARG)
    if not isinstance(version_arg, str) or not version_arg:
        raise ConfigurationError("VERSION_ARG must be a non-empty string", path=str(wf_path))
    return jobs, version_arg


# ----------------------------------------------------------------------
# Run result
# ----------------------------------------------------------------------

@dataclass
class RunResult:
    trigger: TriggerContext
    version: ResolvedVersion
    instances: List[JobInstance]
    relay: ArtifactRelay
    cancelled: bool = False
    cancel_reason: str = ""
    # matrix/plain nodes never expanded because the run was cancelled first
    cancelled_nodes: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(i.status is JobStatus.FAILED for i in self.instances)

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.cancelled:
            return "cancelled"
        return "succeeded"

    @property
    def exit_code(self) -> int:
        if self.failed:
            return 1
        if self.cancelled:
            return 2
        return 0

    def get(self, instance_id: str) -> JobInstance:
        for inst in self.instances:
            if inst.instance_id == instance_id:
                return inst
        raise KeyError(instance_id)

    def of_node(self, node_id: str) -> List[JobInstance]:
        return [i for i in self.instances if i.node_id == node_id]

    def rows(self) -> List[Tuple[str, str]]:
        rows = [(i.instance_id, i.outcome) for i in self.instances]
        rows.extend((n, "cancelled (run cancelled)") for n in self.cancelled_nodes)
        return rows


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class Scheduler:
    """
    Runs a job graph for one trigger.

    Nodes are expanded into instances when all their dependencies are
    terminal; eligible instances go to a bounded thread pool. A failure
    cancels dependents only, independent branches keep running.
    """

    def __init__(
        self,
        nodes: List[JobNode],
        trigger: TriggerContext,
        *,
        executor: JobExecutor,
        services: Services,
        relay: Optional[ArtifactRelay] = None,
        max_workers: Optional[int] = None,
        protected_branch: str = "master",
        version_arg: str = DEFAULT_VERSION_ARG,
        handle: Optional[RunHandle] = None,
        poll_interval: float = 0.2,
        repo_root: str | Path = ".",
        extra_params: Optional[Dict[str, str]] = None,
    ):
        self.nodes = list(nodes)
        self.by_name = {n.name: n for n in self.nodes}
        self.adj, self.indeg = build_dag(self.nodes)
        topo_levels(self.adj, self.indeg)  # rejects cycles before anything runs

        self.trigger = trigger
        self.protected_branch = protected_branch
        self.version = resolve_version(trigger, protected_branch=protected_branch)
        self.shared_args = build_args(trigger, self.version, version_arg=version_arg)
        self.extra_params = dict(extra_params or {})
        check_inputs(self.nodes, self.adj, self._render)

        self.executor = executor
        self.services = services
        self.relay = relay if relay is not None else ArtifactRelay()
        self.max_workers = max_workers or default_workers()
        self.handle = handle or RunHandle(group="local", trigger=trigger)
        self.poll_interval = poll_interval
        self.repo_root = Path(repo_root)

        self._order = {n.name: idx for idx, n in enumerate(self.nodes)}
        self._lock = threading.Lock()
        self._instances: Dict[str, List[JobInstance]] = {}
        self._open: Dict[str, int] = {}  # node -> instances not yet terminal
        self._remaining = dict(self.indeg)
        self._ready: Deque[str] = deque(sorted((n for n, d in self.indeg.items() if d == 0), key=self._order.get))
        self._halted = False

    # ---- graph bookkeeping (control loop thread only) ----

    def _node_done(self, name: str) -> None:
        if self._halted:
            return
        for dependent in sorted(self.adj[name], key=self._order.get):
            self._remaining[dependent] -= 1
            if self._remaining[dependent] == 0:
                self._ready.append(dependent)

    def _finish(self, inst: JobInstance, status: JobStatus, reason: str = "") -> None:
        with self._lock:
            inst.status = status
            if reason:
                inst.reason = reason
        self._open[inst.node_id] -= 1
        if self._open[inst.node_id] == 0:
            self._node_done(inst.node_id)

    def _dependency_verdict(self, node: JobNode) -> Tuple[Optional[JobStatus], str]:
        statuses = [i.status for need in node.needs for i in self._instances[need]]
        if any(s in (JobStatus.FAILED, JobStatus.CANCELLED) for s in statuses):
            return JobStatus.CANCELLED, "dependency failed"
        if any(s is JobStatus.SKIPPED for s in statuses) and not node.skipped_satisfies:
            return JobStatus.SKIPPED, "dependency skipped"
        if not node.when(self.trigger):
            return JobStatus.SKIPPED, "predicate false"
        return None, ""

    def _release(self, name: str, pool: ThreadPoolExecutor, in_flight: Dict[Future, JobInstance]) -> None:
        console = get_console()
        node = self.by_name[name]
        instances = expand(node, self.trigger, self.version, self.shared_args)
        self._instances[name] = instances
        self._open[name] = len(instances)

        verdict, reason = self._dependency_verdict(node)
        if verdict is None:
            for inst in instances:
                fut = pool.submit(self._run_instance, node, inst)
                in_flight[fut] = inst
            return

        for inst in instances:
            if verdict is JobStatus.CANCELLED:
                console.print_job_cancelled(inst.instance_id, reason)
            else:
                console.print_job_skipped(inst.instance_id, reason)
            self._finish(inst, verdict, reason)

    def _halt(self) -> None:
        console = get_console()
        if not self._halted:
            console.print_info(f"Run cancelled: {self.handle.cancel_reason or 'cancel requested'}")
        self._halted = True
        self._ready.clear()

    # ---- instance execution (worker threads) ----

    def _params(self, node: JobNode, platform: Optional[str]) -> Dict[str, str]:
        params = template_params(self.trigger, self.version, platform)
        if platform is not None:
            params.setdefault(node.axis_key, platform)
        params.update(self.extra_params)
        params["node"] = node.name
        return params

    def _render(self, node: JobNode, platform: Optional[str], value: str) -> str:
        return Template(value).safe_substitute(self._params(node, platform))

    def _report_coverage(self, node: JobNode, inst: JobInstance) -> None:
        console = get_console()
        path = self.repo_root / node.coverage.file
        try:
            self.services.coverage.report_coverage(path, node.coverage.label)
        except Exception as e:
            # coverage upload never fails a job
            console.print_warning(f"[{inst.instance_id}] coverage upload failed: {e}")

    def _publish(self, node: JobNode, inst: JobInstance, inputs: Dict[str, object]) -> None:
        console = get_console()
        decision = gate.evaluate(self.trigger, self.protected_branch)
        console.print_publish_decision(inst.instance_id, decision.should_publish, decision.reason)
        if not decision.should_publish:
            inst.publish_skipped = True
            inst.reason = decision.reason
            return

        ctx = ActionContext(
            instance=inst,
            trigger=self.trigger,
            version=self.version,
            services=self.services,
            params=self._params(node, inst.platform_id),
            inputs=inputs,
        )
        for name, payload in (node.publish(ctx) or {}).items():
            inst.outputs[name] = self.relay.put(inst.instance_id, name, payload)

    def _run_instance(self, node: JobNode, inst: JobInstance) -> Tuple[JobStatus, str]:
        console = get_console()
        with self._lock:
            if self.handle.cancelled:
                return JobStatus.CANCELLED, "run cancelled"
            inst.status = JobStatus.RUNNING
        console.print_job_start(inst.instance_id)

        inputs = {name: self.relay.get(name) for name in inst.inputs}
        result = self.executor.execute(
            ExecutionRequest(
                instance_id=inst.instance_id,
                steps=inst.steps,
                env=inst.env,
                build_args=inst.build_args,
                inputs=inputs,
                outputs=inst.outputs_declared,
            )
        )
        if result.exit_code != 0:
            raise StepFailure(
                job=inst.instance_id,
                step=result.failed_step or "<unknown>",
                cmd=result.failed_cmd or "",
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        if self.handle.cancelled:
            return JobStatus.CANCELLED, "run cancelled"

        for name, payload in result.outputs.items():
            inst.outputs[name] = self.relay.put(inst.instance_id, name, payload)

        if node.coverage is not None:
            self._report_coverage(node, inst)

        if node.is_publishing:
            self._publish(node, inst, inputs)

        return JobStatus.SUCCEEDED, ""

    def _record(self, inst: JobInstance, fut: Future) -> None:
        console = get_console()
        try:
            status, reason = fut.result()
        except StepFailure as e:
            status, reason = JobStatus.FAILED, ""
            inst.error = str(e)
            hint = TOOL_HINTS.get(e.cmd.split(" ", 1)[0]) if e.exit_code == 127 else None
            console.print_failure(inst.instance_id, e.stderr or str(e), exit_code=e.exit_code, hint=hint)
        except CIError as e:
            status, reason = JobStatus.FAILED, ""
            inst.error = str(e)
            console.print_failure(inst.instance_id, str(e), hint=e.details.get("hint"))
        except Exception as e:
            status, reason = JobStatus.FAILED, ""
            inst.error = f"{type(e).__name__}: {e}"
            console.print_failure(inst.instance_id, inst.error)
            if console.debug:
                console.print_exception(e)

        if self.handle.cancelled and status is not JobStatus.CANCELLED:
            # results of instances still running at cancel time are discarded
            status, reason = JobStatus.CANCELLED, "run cancelled"

        self._finish(inst, status, reason)
        if status is JobStatus.CANCELLED:
            console.print_job_cancelled(inst.instance_id, reason)
        else:
            console.print_job_finished(inst.instance_id, inst.outcome)

    # ---- control loop ----

    def run(self) -> RunResult:
        in_flight: Dict[Future, JobInstance] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while self._ready or in_flight:
                if self.handle.cancelled:
                    self._halt()

                while self._ready:
                    self._release(self._ready.popleft(), pool, in_flight)

                if not in_flight:
                    continue

                # wake on the first completion, or periodically to notice cancellation
                done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: self._order[in_flight[f].node_id]):
                    self._record(in_flight.pop(fut), fut)

        instances = [i for n in self.nodes for i in self._instances.get(n.name, [])]
        cancelled_nodes = [n.name for n in self.nodes if n.name not in self._instances]
        return RunResult(
            trigger=self.trigger,
            version=self.version,
            instances=instances,
            relay=self.relay,
            cancelled=self.handle.cancelled,
            cancel_reason=self.handle.cancel_reason,
            cancelled_nodes=cancelled_nodes,
        )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_dag(
    nodes: List[JobNode],
    trigger: TriggerContext,
    *,
    executor: JobExecutor,
    services: Services,
    settings: Optional[Settings] = None,
    groups: ConcurrencyGroups | RedisConcurrencyGroups | None = None,
    max_workers: Optional[int] = None,
    artifact_dir: str | Path | None = None,
    version_arg: str = DEFAULT_VERSION_ARG,
    repo_root: str | Path = ".",
) -> RunResult:
    """
    Run a workflow for one trigger and return every instance's outcome.

    Registers the run in its concurrency group for the duration of the run,
    so a newer pull request run for the same ref can cancel it. With
    RELEASECI_REDIS_URL set the group is shared between processes.
    """
    settings = settings or Settings(max_workers=default_workers())
    groups = groups if groups is not None else groups_from_settings(settings)
    handle = groups.start(trigger)

    relay = None
    if artifact_dir is not None:
        relay = ArtifactRelay(DirectoryStore(Path(artifact_dir) / handle.run_id))

    try:
        scheduler = Scheduler(
            nodes,
            trigger,
            executor=executor,
            services=services,
            relay=relay,
            max_workers=max_workers or settings.max_workers,
            protected_branch=settings.protected_branch,
            version_arg=version_arg,
            handle=handle,
            poll_interval=settings.poll_interval,
            repo_root=repo_root,
            extra_params={
                "namespace": settings.image_namespace,
                "repository": settings.repository_name,
            },
        )
        return scheduler.run()
    finally:
        groups.finish(handle)
