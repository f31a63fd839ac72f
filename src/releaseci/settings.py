# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class Settings:
    protected_branch: str = "master"
    max_workers: int = 1
    artifact_dir: str = ".releaseci/artifacts"
    concurrency_prefix: str = "releaseci"
    image_namespace: str = "blockstack"
    poll_interval: float = 0.2
    redis_url: Optional[str] = None
    lease_seconds: int = 600

    docker_username: Optional[str] = None
    docker_password: Optional[str] = None
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    repository: Optional[str] = None

    @property
    def repository_name(self) -> str:
        if self.repository:
            return self.repository.rsplit("/", 1)[-1]
        return "stacks-blockchain"


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer", value=raw)
    if value < 1:
        raise ConfigurationError(f"{key} must be >= 1", value=raw)
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number", value=raw)
    if value <= 0:
        raise ConfigurationError(f"{key} must be > 0", value=raw)
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        protected_branch=env.get("RELEASECI_PROTECTED_BRANCH") or "master",
        max_workers=_int(env, "RELEASECI_MAX_WORKERS", default_workers()),
        artifact_dir=env.get("RELEASECI_ARTIFACT_DIR") or ".releaseci/artifacts",
        concurrency_prefix=env.get("RELEASECI_CONCURRENCY_PREFIX") or "releaseci",
        image_namespace=env.get("RELEASECI_IMAGE_NAMESPACE") or "blockstack",
        poll_interval=_float(env, "RELEASECI_POLL_INTERVAL", 0.2),
        # shared concurrency groups across separate runs
        redis_url=env.get("RELEASECI_REDIS_URL") or None,
        lease_seconds=_int(env, "RELEASECI_LEASE_SECONDS", 600),
        docker_username=env.get("DOCKERHUB_USERNAME") or None,
        docker_password=env.get("DOCKERHUB_PASSWORD") or None,
        # custom token wins over the default one, it can trigger follow-up workflows
        github_token=env.get("GH_TOKEN") or env.get("GITHUB_TOKEN") or None,
        github_api_url=env.get("GITHUB_API_URL") or "https://api.github.com",
        repository=env.get("GITHUB_REPOSITORY") or None,
    )
