# gate.py
from __future__ import annotations

from dataclasses import dataclass

from .model import TriggerContext
from .version import DEFAULT_PROTECTED_BRANCH


@dataclass(frozen=True)
class PublishDecision:
    """
    Outcome of the publish gate for one publishing instance.

    `should_publish=False` is a soft skip: the job body ran, only the
    push/release call is left out.
    """
    should_publish: bool
    reason: str


def is_protected_ref(ref_name: str, protected_branch: str = DEFAULT_PROTECTED_BRANCH) -> bool:
    return ref_name in (protected_branch, f"refs/heads/{protected_branch}")


def is_pull_request(ctx: TriggerContext) -> bool:
    return ctx.is_pull_request


def should_publish(ctx: TriggerContext, protected_branch: str = DEFAULT_PROTECTED_BRANCH) -> bool:
    # tag OR (not protected AND not a pull request)
    if ctx.has_user_tag:
        return True
    return not is_protected_ref(ctx.ref_name, protected_branch) and not is_pull_request(ctx)


def evaluate(ctx: TriggerContext, protected_branch: str = DEFAULT_PROTECTED_BRANCH) -> PublishDecision:
    if ctx.has_user_tag:
        return PublishDecision(True, f"tag {ctx.user_tag!r} supplied")
    if is_pull_request(ctx):
        return PublishDecision(False, "pull request without tag")
    if is_protected_ref(ctx.ref_name, protected_branch):
        return PublishDecision(False, f"protected branch {protected_branch!r} without tag")
    return PublishDecision(True, f"non-protected ref {ctx.ref_name!r}")


def has_user_tag(ctx: TriggerContext) -> bool:
    """Hard precondition for release creation: a tag was explicitly supplied."""
    return ctx.has_user_tag


def never(ctx: TriggerContext) -> bool:
    return False
