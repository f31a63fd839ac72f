# step_workflows/docker.py
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Mapping

from ..errors import TOOL_HINTS, CIError
from ..model import Step


# ---------------------------------------------------------------------
# Docker step helper
# ---------------------------------------------------------------------

def docker_step(
    name: str,
    cmd: str,
    image: str,
    *,
    cwd: str | None = None,
    volumes: List[str] | None = None,
) -> Step:
    """Create a step that runs `cmd` inside a container of `image`."""
    return Step(name=name, run=cmd, cwd=cwd, image=image, volumes=tuple(volumes or ()))


# ---------------------------------------------------------------------
# Docker step execution
# ---------------------------------------------------------------------

def check_docker_available(job: str = "") -> None:
    """Check if Docker is available, raise helpful error if not."""
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise CIError(
            kind="docker_unavailable",
            job=job,
            step=None,
            message="Docker is not available",
            details={"hint": TOOL_HINTS["docker"]},
        )


def container_command(step: Step, repo_root: Path, env: Mapping[str, str]) -> List[str]:
    """
    Build the `docker run` command for a container step.

    The repository is mounted at /workspace; only the job's own env and
    build args are forwarded, not the host environment.
    """
    container_workdir = "/workspace"
    cmd = ["docker", "run", "--rm"]

    cmd.extend(["-v", f"{repo_root.resolve()}:{container_workdir}"])
    for vol in step.volumes:
        cmd.extend(["-v", vol])

    step_cwd = step.cwd or "."
    container_cwd = f"{container_workdir}/{step_cwd}".replace("//", "/")
    cmd.extend(["-w", container_cwd])

    for key, value in env.items():
        cmd.extend(["-e", f"{key}={value}"])

    cmd.append(step.image or "")
    cmd.extend(["sh", "-c", step.run])
    return cmd


def forwarded_env(job_env: Mapping[str, str], build_args: Mapping[str, str]) -> Dict[str, str]:
    env = dict(build_args)
    env.update(job_env)
    return env
