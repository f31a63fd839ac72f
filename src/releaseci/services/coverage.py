# services/coverage.py
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

from ..errors import TOOL_HINTS
from ..ui.console import get_console


class CoverageReporter(Protocol):
    def report_coverage(self, file_path: str | Path, label: str) -> bool: ...


class CodecovReporter:
    """
    Uploads a coverage file with the Codecov CLI.

    Best effort: a failed upload never fails the job, it only logs a warning.
    """

    def __init__(self, token: Optional[str] = None, binary: str = "codecovcli"):
        self.token = token if token is not None else os.environ.get("CODECOV_TOKEN")
        self.binary = binary

    def report_coverage(self, file_path: str | Path, label: str) -> bool:
        console = get_console()
        path = Path(file_path)
        if not path.exists():
            console.print_warning(f"coverage file {path} not found, skipping upload ({label})")
            return False

        cmd: List[str] = [self.binary, "upload-process", "--file", str(path), "--name", label]
        if self.token:
            cmd.extend(["--token", self.token])
        try:
            proc = subprocess.run(cmd, text=True, capture_output=True)
        except FileNotFoundError:
            console.print_warning(f"{self.binary} not installed, coverage for {label} not uploaded. {TOOL_HINTS['codecovcli']}")
            return False

        if proc.returncode != 0:
            console.print_warning(f"coverage upload failed for {label} (exit={proc.returncode})")
            console.print_debug(proc.stderr[-2000:])
            return False
        return True


class DryRunCoverage:
    def report_coverage(self, file_path: str | Path, label: str) -> bool:
        get_console().print_info(f"(dry-run) would upload coverage {file_path} as {label}")
        return True
