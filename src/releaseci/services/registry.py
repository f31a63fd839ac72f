# services/registry.py
from __future__ import annotations

import subprocess
from typing import List, Mapping, Optional, Protocol, Sequence

from ..errors import TOOL_HINTS, ExternalServiceFailure
from ..ui.console import get_console


class Registry(Protocol):
    def push(self, image_ref: str, tags: Sequence[str], labels: Mapping[str, str]) -> bool: ...


def repository_of(image_ref: str) -> str:
    """`blockstack/stacks-blockchain:abc1234` -> `blockstack/stacks-blockchain`"""
    last = image_ref.rsplit("/", 1)[-1]
    if ":" in last:
        return image_ref[: len(image_ref) - len(last)] + last.split(":", 1)[0]
    return image_ref


class DockerRegistry:
    """
    Pushes a locally built image through the docker CLI.

    Labels are stamped by a one-line rebuild (`FROM <image_ref>`) that also
    applies every tag, then each tag is pushed.
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        server: Optional[str] = None,
    ):
        self.username = username
        self.password = password
        self.server = server
        self._logged_in = False

    def _docker(self, args: List[str], *, stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["docker", *args],
                input=stdin,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as e:
            raise ExternalServiceFailure("registry", "docker CLI not found", hint=TOOL_HINTS["docker"]) from e

    def login(self) -> None:
        if self._logged_in or not (self.username and self.password):
            return
        args = ["login", "--username", self.username, "--password-stdin"]
        if self.server:
            args.append(self.server)
        proc = self._docker(args, stdin=self.password)
        if proc.returncode != 0:
            raise ExternalServiceFailure("registry", "docker login rejected", stderr=proc.stderr.strip()[-500:])
        self._logged_in = True

    def push(self, image_ref: str, tags: Sequence[str], labels: Mapping[str, str]) -> bool:
        if not tags:
            raise ExternalServiceFailure("registry", f"No tags to push for {image_ref}")

        self.login()
        repo = repository_of(image_ref)
        targets = [f"{repo}:{t}" for t in tags]

        build = ["build", "--quiet"]
        for key, value in labels.items():
            build.extend(["--label", f"{key}={value}"])
        for target in targets:
            build.extend(["-t", target])
        build.append("-")
        proc = self._docker(build, stdin=f"FROM {image_ref}\n")
        if proc.returncode != 0:
            raise ExternalServiceFailure("registry", f"Could not tag {image_ref}", stderr=proc.stderr.strip()[-500:])

        for target in targets:
            get_console().print_debug(f"docker push {target}")
            proc = self._docker(["push", target])
            if proc.returncode != 0:
                raise ExternalServiceFailure("registry", f"Push rejected for {target}", stderr=proc.stderr.strip()[-500:])
        return True


class DryRunRegistry:
    def __init__(self):
        self.pushed: List[tuple[str, tuple[str, ...]]] = []

    def push(self, image_ref: str, tags: Sequence[str], labels: Mapping[str, str]) -> bool:
        self.pushed.append((image_ref, tuple(tags)))
        get_console().print_info(f"(dry-run) would push {image_ref} as {', '.join(tags)}")
        return True
