# actions.py
"""
Publish actions: the effectful part of a publishing job.

An action runs after the job body succeeded and only when the publish gate
allows it. It returns outputs (name -> payload) to put in the artifact relay.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Callable, Dict

from .errors import ExternalServiceFailure
from .model import JobInstance, ResolvedVersion, TriggerContext
from .services import Services
from .version import image_labels, image_tags

PublishAction = Callable[["ActionContext"], Dict[str, Any]]


@dataclass
class ActionContext:
    instance: JobInstance
    trigger: TriggerContext
    version: ResolvedVersion
    services: Services
    params: Dict[str, str] = field(default_factory=dict)
    inputs: Dict[str, Any] = field(default_factory=dict)

    def render(self, value: str) -> str:
        return Template(value).safe_substitute(self.params)

    def input(self, name: str) -> Any:
        key = self.render(name)
        if key not in self.inputs:
            raise ExternalServiceFailure(
                "artifact_store",
                f"Input {key!r} was not declared or not produced",
                job=self.instance.instance_id,
            )
        return self.inputs[key]


def push_image(image: str, *, local_ref: str, variant: str = "primary") -> PublishAction:
    """
    Push a locally built image.

    variant="primary": ref tags + the user tag (if any)
    variant="legacy":  ref tags + the legacy tag (always set)
    """
    if variant not in ("primary", "legacy"):
        raise ValueError(f"unknown image variant {variant!r}")

    def _push(ctx: ActionContext) -> Dict[str, Any]:
        repo = ctx.render(image)
        extra = ctx.trigger.user_tag if variant == "primary" else ctx.version.legacy_tag
        tags = image_tags(ctx.trigger, extra)
        labels = image_labels(ctx.trigger, ctx.version, repo)
        if not ctx.services.registry.push(ctx.render(local_ref), tags, labels):
            raise ExternalServiceFailure("registry", f"Push of {repo} failed", job=ctx.instance.instance_id)
        return {f"{ctx.instance.node_id}.tags": ",".join(f"{repo}:{t}" for t in tags)}

    _push.__name__ = f"push_image[{variant}]"
    _push.produces = ("${node}.tags",)
    return _push


def create_release(*, draft: bool = False, prerelease: bool = True) -> PublishAction:
    """Create a release for the user tag; outputs `upload_url`."""

    def _create(ctx: ActionContext) -> Dict[str, Any]:
        tag = ctx.trigger.user_tag or ctx.trigger.ref_name
        upload_url = ctx.services.releases.create_release(
            tag_name=tag,
            name=f"Release {tag}",
            draft=draft,
            prerelease=prerelease,
        )
        return {"upload_url": upload_url}

    _create.produces = ("upload_url",)
    return _create


def upload_release_asset(
    artifact: str = "${platform}",
    *,
    asset_name: str = "${platform}.zip",
    content_type: str = "application/zip",
) -> PublishAction:
    """Upload a relayed artifact to the release created upstream."""

    def _upload(ctx: ActionContext) -> Dict[str, Any]:
        upload_url = str(ctx.input("upload_url"))
        payload = ctx.input(artifact)
        if not isinstance(payload, (str, Path)):
            raise ExternalServiceFailure("release", f"Artifact {ctx.render(artifact)!r} is not a file")
        name = ctx.render(asset_name)
        if not ctx.services.releases.upload_asset(upload_url, payload, name, content_type):
            raise ExternalServiceFailure("release", f"Upload of {name} rejected", job=ctx.instance.instance_id)
        return {}

    return _upload
