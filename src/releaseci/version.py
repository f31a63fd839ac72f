# version.py
"""
Version / tag resolution.

Every run publishes two image variants (primary and legacy base), so every
run needs two human readable tags even when no explicit tag was supplied:

    user tag given       -> <tag>            / <tag>-legacy
    protected branch     -> <commit_short>   / latest-legacy
    any other ref        -> <commit_short>   / <sanitized-ref>-legacy
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from .model import ResolvedVersion, TriggerContext

DEFAULT_PROTECTED_BRANCH = "master"
DEFAULT_VERSION_ARG = "NODE_VERSION"

# one leading ref namespace, like the shell expansion ${REF#refs/*/}
_REF_PREFIX = re.compile(r"^refs/[^/]+/")
_PULL_REF = re.compile(r"^refs/pull/(\d+)/")


def short_ref(ref_name: str) -> str:
    """Strip one leading `refs/<namespace>/` prefix, slashes kept."""
    return _REF_PREFIX.sub("", ref_name, count=1)


def sanitize_ref(ref_name: str) -> str:
    """`refs/heads/feature/x` -> `feature-x`."""
    return short_ref(ref_name).replace("/", "-")


def resolve_version(
    ctx: TriggerContext,
    *,
    protected_branch: str = DEFAULT_PROTECTED_BRANCH,
) -> ResolvedVersion:
    commit_short = ctx.commit_hash[:7]
    sanitized = sanitize_ref(ctx.ref_name)

    if ctx.has_user_tag:
        primary = ctx.user_tag
        legacy = f"{ctx.user_tag}-legacy"
    else:
        primary = commit_short
        if sanitized == protected_branch:
            legacy = "latest-legacy"
        else:
            legacy = f"{sanitized}-legacy"

    return ResolvedVersion(
        primary_tag=primary,
        legacy_tag=legacy,
        commit_short=commit_short,
        sanitized_ref=sanitized,
    )


def build_args(
    ctx: TriggerContext,
    version: ResolvedVersion,
    *,
    version_arg: str = DEFAULT_VERSION_ARG,
) -> Dict[str, str]:
    """Build arguments stamped into every build (version, branch, commit)."""
    return {
        version_arg: version.primary_tag,
        "GIT_BRANCH": short_ref(ctx.ref_name),
        "GIT_COMMIT": version.commit_short,
    }


def template_params(
    ctx: TriggerContext,
    version: ResolvedVersion,
    platform: Optional[str] = None,
) -> Dict[str, str]:
    """Values available to ${...} templates in job definitions."""
    params = {
        "primary_tag": version.primary_tag,
        "legacy_tag": version.legacy_tag,
        "commit_short": version.commit_short,
        "ref": version.sanitized_ref,
        "tag": ctx.user_tag or "",
    }
    if platform is not None:
        params["platform"] = platform
    return params


def image_tags(ctx: TriggerContext, extra: Optional[str] = None) -> List[str]:
    """
    Registry tags for an image pushed from this trigger.

    - branch refs give the sanitized branch name
    - pull request refs give `pr-<number>`
    - `extra` (user tag or legacy tag) is appended when non-empty
    """
    tags: List[str] = []
    ref = ctx.ref_name

    pull = _PULL_REF.match(ref)
    if pull:
        tags.append(f"pr-{pull.group(1)}")
    elif ref.startswith("refs/heads/"):
        tags.append(sanitize_ref(ref))

    if extra and extra not in tags:
        tags.append(extra)
    return tags


def image_labels(ctx: TriggerContext, version: ResolvedVersion, image: str) -> Dict[str, str]:
    return {
        "org.opencontainers.image.title": image.rsplit("/", 1)[-1],
        "org.opencontainers.image.revision": ctx.commit_hash,
        "org.opencontainers.image.version": version.primary_tag,
        "org.opencontainers.image.ref.name": short_ref(ctx.ref_name),
    }
