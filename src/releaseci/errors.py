# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-instance failure reasons in the results table
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Malformed trigger, settings or workflow graph. Raised before any job runs."""

    def __init__(self, message: str, **details):
        super().__init__(kind="configuration", job="", step=None, message=message, details=details)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class ExternalServiceFailure(CIError):
    """Artifact store, registry or release service unreachable or rejecting a call."""

    def __init__(self, service: str, message: str, *, job: str = "", **details):
        super().__init__(kind=f"{service}_failure", job=job, step=None, message=message, details=details)
        self.service = service


TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "zip": "Install zip or fix PATH.",
    "codecovcli": "Install the Codecov CLI (pip install codecov-cli).",
    "git": "Install Git or fix PATH.",
}
