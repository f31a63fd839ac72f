# matrix.py
from __future__ import annotations

from dataclasses import replace
from string import Template
from typing import Dict, List, Mapping, Optional

from .errors import ConfigurationError
from .model import JobInstance, JobNode, ResolvedVersion, TriggerContext
from .version import template_params


def _render(value: str, params: Mapping[str, str]) -> str:
    return Template(value).safe_substitute(params)


def _render_map(values: Mapping[str, str], params: Mapping[str, str]) -> Dict[str, str]:
    return {_render(k, params): _render(v, params) for k, v in values.items()}


def check_axis(node: JobNode) -> List[str]:
    axis = list(node.platforms or [])
    if node.platforms is not None and not axis:
        raise ConfigurationError(f"Job '{node.name}' declares an empty platform axis")
    dupes = sorted({p for p in axis if axis.count(p) > 1})
    if dupes:
        raise ConfigurationError(f"Job '{node.name}' has duplicate platforms", duplicates=", ".join(dupes))
    return axis


def instantiate(
    node: JobNode,
    platform: Optional[str],
    ctx: TriggerContext,
    version: ResolvedVersion,
    shared_build_args: Optional[Mapping[str, str]] = None,
) -> JobInstance:
    params = template_params(ctx, version, platform)
    if platform is not None:
        params.setdefault(node.axis_key, platform)

    build_args = dict(shared_build_args or {})
    build_args.update(node.build_args)
    build_args = _render_map(build_args, params)
    if platform is not None:
        build_args.setdefault("PLATFORM", platform)

    # fresh copies per instance, nothing mutable is shared
    return JobInstance(
        node_id=node.name,
        platform_id=platform,
        depends_on=frozenset(node.needs),
        steps=[
            replace(s, run=_render(s.run, params), cwd=_render(s.cwd, params) if s.cwd else s.cwd)
            for s in node.steps
        ],
        env=_render_map(node.env, params),
        build_args=build_args,
        inputs=[_render(name, params) for name in node.inputs],
        outputs_declared=_render_map(node.outputs, params),
    )


def expand(
    node: JobNode,
    ctx: TriggerContext,
    version: ResolvedVersion,
    shared_build_args: Optional[Mapping[str, str]] = None,
) -> List[JobInstance]:
    """
    Fan a node out over its platform axis.

    A node without an axis yields a single instance with platform_id=None.
    Axis order is kept; it is the scheduler's dispatch tie-break.
    """
    axis = check_axis(node)
    if not axis:
        return [instantiate(node, None, ctx, version, shared_build_args)]
    return [instantiate(node, p, ctx, version, shared_build_args) for p in axis]
