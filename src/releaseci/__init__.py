from .dsl import job, sh, docker_step, matrix, wf, JobBuilder, build
from .gate import has_user_tag, never, should_publish
from .model import EventKind, JobNode, JobStatus, Step, TriggerContext, always
from .runner import run_dag, RunResult, Scheduler
from .trigger import resolve_trigger
from .version import resolve_version

__all__ = [
    "job",
    "sh",
    "docker_step",
    "matrix",
    "wf",
    "JobBuilder",
    "build",
    "always",
    "never",
    "has_user_tag",
    "should_publish",
    "EventKind",
    "JobNode",
    "JobStatus",
    "Step",
    "TriggerContext",
    "run_dag",
    "RunResult",
    "Scheduler",
    "resolve_trigger",
    "resolve_version",
]
