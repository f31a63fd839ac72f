# executor.py
"""
Job execution: run a job instance's steps, observe the exit code, collect
the declared outputs. The scheduler never looks inside the steps.
"""
from __future__ import annotations

import os
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .errors import CIError
from .model import Step
from .step_workflows.docker import check_docker_available, container_command, forwarded_env
from .ui.console import get_console


@dataclass
class ExecutionRequest:
    instance_id: str
    steps: List[Step]
    env: Dict[str, str] = field(default_factory=dict)
    build_args: Dict[str, str] = field(default_factory=dict)
    # artifact name -> payload read from the relay
    inputs: Dict[str, Any] = field(default_factory=dict)
    # artifact name -> path (relative to the repo root) the job must produce
    outputs: Dict[str, str] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    exit_code: int
    outputs: Dict[str, Any] = field(default_factory=dict)
    failed_step: Optional[str] = None
    failed_cmd: Optional[str] = None
    stdout: str = ""
    stderr: str = ""


class JobExecutor(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionResult: ...


def input_env_name(name: str) -> str:
    """`linux-x64` -> `RELEASECI_INPUT_LINUX_X64`"""
    return "RELEASECI_INPUT_" + re.sub(r"[^A-Za-z0-9]", "_", name).upper()


class ShellExecutor:
    """
    Runs steps on the host shell, or in a container when the step names an
    image. Build args and job env are exported to every step; inputs are
    exported as RELEASECI_INPUT_<NAME> (a path, or the text value).
    """

    def __init__(self, repo_root: str | Path = "."):
        self.repo_root = Path(repo_root).resolve()

    def _input_env(self, inputs: Mapping[str, Any], scratch: Path) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for name, payload in inputs.items():
            if isinstance(payload, bytes):
                target = scratch / re.sub(r"[^A-Za-z0-9._-]", "_", name)
                target.write_bytes(payload)
                env[input_env_name(name)] = str(target)
            else:
                env[input_env_name(name)] = str(payload)
        return env

    def _run_step(self, request: ExecutionRequest, step: Step, env: Dict[str, str]) -> subprocess.CompletedProcess:
        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise CIError(
                kind="bad_cwd",
                job=request.instance_id,
                step=step.name,
                message=f"step cwd not found: {cwd}",
            )

        if step.image:
            check_docker_available(request.instance_id)
            return subprocess.run(
                container_command(step, self.repo_root, env),
                shell=False,
                text=True,
                capture_output=True,
            )

        full_env = os.environ.copy()
        full_env.update(env)
        return subprocess.run(
            step.run,
            shell=True,
            cwd=str(cwd),
            env=full_env,
            text=True,
            capture_output=True,
        )

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        console = get_console()

        with tempfile.TemporaryDirectory(prefix="releaseci-inputs-") as scratch:
            env = forwarded_env(request.env, request.build_args)
            env.update(self._input_env(request.inputs, Path(scratch)))

            for step in request.steps:
                console.print_step(request.instance_id, step.name)
                proc = self._run_step(request, step, env)
                if proc.returncode != 0:
                    return ExecutionResult(
                        exit_code=proc.returncode,
                        failed_step=step.name,
                        failed_cmd=step.run,
                        stdout=proc.stdout[-4000:],
                        stderr=proc.stderr[-4000:],
                    )

        outputs: Dict[str, Any] = {}
        for name, rel in request.outputs.items():
            path = (self.repo_root / rel).resolve()
            if not path.exists():
                raise CIError(
                    kind="missing_output",
                    job=request.instance_id,
                    step=None,
                    message=f"declared output {name!r} was not produced",
                    details={"path": str(path)},
                )
            outputs[name] = path

        return ExecutionResult(exit_code=0, outputs=outputs)


class DryRunExecutor:
    """Prints what would run. Outputs are recorded as their declared paths."""

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        console = get_console()
        for step in request.steps:
            where = f" (in {step.image})" if step.image else ""
            console.print_step(request.instance_id, f"{step.name}{where}: {step.run}")
        return ExecutionResult(
            exit_code=0,
            outputs={name: f"dry-run:{rel}" for name, rel in request.outputs.items()},
        )
