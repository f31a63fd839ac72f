from __future__ import annotations

from dataclasses import dataclass

from ..settings import Settings
from .coverage import CodecovReporter, CoverageReporter, DryRunCoverage
from .registry import DockerRegistry, DryRunRegistry, Registry
from .releases import DryRunReleases, GitHubReleases, ReleaseService


@dataclass
class Services:
    """External collaborators a run talks to besides the job executor."""
    registry: Registry
    releases: ReleaseService
    coverage: CoverageReporter


def services_from_settings(settings: Settings, *, dry_run: bool = False) -> Services:
    if dry_run:
        return Services(registry=DryRunRegistry(), releases=DryRunReleases(), coverage=DryRunCoverage())
    return Services(
        registry=DockerRegistry(settings.docker_username, settings.docker_password),
        releases=GitHubReleases(
            settings.repository or f"{settings.image_namespace}/{settings.repository_name}",
            settings.github_token,
            settings.github_api_url,
        ),
        coverage=CodecovReporter(),
    )


__all__ = [
    "Services",
    "services_from_settings",
    "Registry",
    "DockerRegistry",
    "DryRunRegistry",
    "ReleaseService",
    "GitHubReleases",
    "DryRunReleases",
    "CoverageReporter",
    "CodecovReporter",
    "DryRunCoverage",
]
