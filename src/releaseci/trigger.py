# trigger.py
"""
Trigger context resolution.

Turns raw event data (from the CLI, the CI environment or the local git
checkout) into a validated, immutable TriggerContext. Anything malformed is
a ConfigurationError: the run never starts.
"""
from __future__ import annotations

import json
import os
import re
import subprocess
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from .errors import TOOL_HINTS, ConfigurationError
from .git_facts.git import get_current_ref, head_sha
from .model import EventKind, TriggerContext

EVENT_ALIASES = {
    "pull_request": EventKind.PULL_REQUEST,
    "pr": EventKind.PULL_REQUEST,
    "workflow_dispatch": EventKind.MANUAL_DISPATCH,
    "dispatch": EventKind.MANUAL_DISPATCH,
    "manual": EventKind.MANUAL_DISPATCH,
}

_HEX = re.compile(r"^[0-9a-fA-F]{7,64}$")


class RawTriggerEvent(BaseModel):
    event_kind: EventKind
    ref_name: str
    commit_hash: str
    user_tag: Optional[str] = None

    @field_validator("event_kind", mode="before")
    @classmethod
    def _event_alias(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().lower()
            if key not in EVENT_ALIASES:
                raise ValueError(f"unknown event kind {v!r} (expected one of {sorted(EVENT_ALIASES)})")
            return EVENT_ALIASES[key]
        return v

    @field_validator("ref_name")
    @classmethod
    def _ref_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ref name must not be empty")
        if v.endswith("/") or " " in v:
            raise ValueError(f"malformed ref name {v!r}")
        return v

    @field_validator("commit_hash")
    @classmethod
    def _commit_hex(cls, v: str) -> str:
        v = v.strip()
        if not _HEX.match(v):
            raise ValueError(f"commit hash must be at least 7 hex characters, got {v!r}")
        return v.lower()

    @field_validator("user_tag")
    @classmethod
    def _tag_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            # an empty tag input means "no tag"
            return None
        if any(c.isspace() for c in v) or v.startswith("/") or v.endswith("/"):
            raise ValueError(f"malformed tag {v!r}")
        return v


def resolve_trigger(
    event_kind: EventKind | str,
    ref_name: str,
    commit_hash: str,
    user_tag: Optional[str] = None,
) -> TriggerContext:
    """Validate raw event data and return the canonical TriggerContext."""
    try:
        raw = RawTriggerEvent(
            event_kind=event_kind,
            ref_name=ref_name,
            commit_hash=commit_hash,
            user_tag=user_tag,
        )
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigurationError("Invalid trigger event", problems="; ".join(problems)) from e

    return TriggerContext(
        event_kind=raw.event_kind,
        ref_name=raw.ref_name,
        commit_hash=raw.commit_hash,
        user_tag=raw.user_tag,
    )


def _tag_from_event_payload(path: str | None) -> Optional[str]:
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError("Event payload is not valid JSON", path=str(p)) from e
    inputs = payload.get("inputs") or {}
    tag = inputs.get("tag")
    return tag if isinstance(tag, str) else None


def resolve_from_environment(environ: Mapping[str, str] | None = None) -> TriggerContext:
    """
    Build the trigger from the CI environment:
      GITHUB_EVENT_NAME, GITHUB_REF, GITHUB_SHA
    The manual tag comes from INPUT_TAG or the JSON payload at GITHUB_EVENT_PATH.
    """
    env = os.environ if environ is None else environ

    missing = [k for k in ("GITHUB_EVENT_NAME", "GITHUB_REF", "GITHUB_SHA") if not env.get(k)]
    if missing:
        raise ConfigurationError("Trigger environment incomplete", missing=", ".join(missing))

    tag = env.get("INPUT_TAG")
    if tag is None:
        tag = _tag_from_event_payload(env.get("GITHUB_EVENT_PATH"))

    return resolve_trigger(env["GITHUB_EVENT_NAME"], env["GITHUB_REF"], env["GITHUB_SHA"], tag)


def resolve_from_git(
    event_kind: EventKind | str = EventKind.MANUAL_DISPATCH,
    *,
    ref_name: str | None = None,
    commit_hash: str | None = None,
    user_tag: str | None = None,
) -> TriggerContext:
    """Fill a missing ref/commit from the local git checkout (local runs)."""
    try:
        if ref_name is None:
            ref_name = get_current_ref()
            if ref_name != "HEAD" and not ref_name.startswith("refs/"):
                ref_name = f"refs/heads/{ref_name}"
        if commit_hash is None:
            commit_hash = head_sha()
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise ConfigurationError(
            "Could not read ref/commit from git",
            hint=f"Pass --ref and --sha explicitly or run inside a git checkout. {TOOL_HINTS['git']}",
        ) from e

    return resolve_trigger(event_kind, ref_name, commit_hash, user_tag)
