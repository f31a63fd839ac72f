# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .gate import has_user_tag, never
from .model import CoverageReport, JobNode, Predicate, Step, always
from .step_workflows.docker import docker_step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    needs: Optional[List[str]] = None,
    platforms: Optional[Iterable[str]] = None,
    when: Predicate = always,
    publish: Optional[Callable[..., Dict[str, Any]]] = None,
    env: Optional[Dict[str, str]] = None,
    build_args: Optional[Dict[str, str]] = None,
    inputs: Optional[List[str]] = None,
    outputs: Optional[Dict[str, str]] = None,
    coverage: Optional[tuple[str, str]] = None,  # (file, label)
    skipped_satisfies: bool = False,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
    description: str = "",
) -> JobNode:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    # a publishing job may have no body (e.g. release creation)
    if not steps_final and publish is None:
        raise ValueError(f"job({name!r}) must have at least one step or a publish action")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobNode(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        platforms=list(platforms) if platforms is not None else None,
        axis_key=getattr(platforms, "key", "platform"),
        when=when,
        publish=publish,
        env={k: str(v) for k, v in (env or {}).items()},
        build_args={k: str(v) for k, v in (build_args or {}).items()},
        inputs=list(inputs or []),
        outputs=dict(outputs or {}),
        coverage=CoverageReport(*coverage) if coverage else None,
        skipped_satisfies=skipped_satisfies,
        description=description,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._platforms: Optional[list[str]] = None
        self._when: Predicate = always
        self._publish: Optional[Callable[..., Dict[str, Any]]] = None
        self._env: dict[str, str] = {}
        self._build_args: dict[str, str] = {}
        self._inputs: list[str] = []
        self._outputs: dict[str, str] = {}
        self._coverage: Optional[tuple[str, str]] = None
        self._skipped_satisfies = False

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def define_container_step(self, name: str, run: str, image: str, cwd: str | None = None):
        self._steps.append(docker_step(name, run, image, cwd=cwd))
        return self

    def over_platforms(self, *platforms: str):
        self._platforms = list(platforms)
        return self

    def run_when(self, predicate: Predicate):
        self._when = predicate
        return self

    def publishes(self, action: Callable[..., Dict[str, Any]]):
        self._publish = action
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_build_args(self, **args):
        self._build_args.update({k: str(v) for k, v in args.items()})
        return self

    def with_inputs(self, *names: str):
        self._inputs.extend(names)
        return self

    def with_output(self, name: str, path: str):
        self._outputs[name] = path
        return self

    def with_coverage(self, file: str, label: str):
        self._coverage = (file, label)
        return self

    def treat_skipped_as_satisfied(self, enabled: bool = True):
        self._skipped_satisfies = enabled
        return self

    def build(self) -> JobNode:
        return job(
            self.name,
            steps_list=self._steps,
            needs=self._needs,
            platforms=self._platforms,
            when=self._when,
            publish=self._publish,
            env=self._env,
            build_args=self._build_args,
            inputs=self._inputs,
            outputs=self._outputs,
            coverage=self._coverage,
            skipped_satisfies=self._skipped_satisfies,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    A named platform axis. Each value is bound to ${platform} and to
    ${<key>} in the job's templates.

    Example:
        TARGETS = matrix("target", ["linux-x64", "macos-arm64"])
        job("dist", sh("build", "make ${target}"), platforms=TARGETS)
    """
    def __init__(self, key: str, values: Iterable[str]):
        self.key = key
        self.values = list(values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


def matrix(key: str, values: Iterable[str]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(*jobs: JobNode) -> List[JobNode]:
    """
    Workflow definition helper.

        from releaseci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )
    """
    return list(jobs)


__all__ = [
    "sh",
    "docker_step",
    "job",
    "JobBuilder",
    "build",
    "matrix",
    "Matrix",
    "wf",
    "always",
    "never",
    "has_user_tag",
]
