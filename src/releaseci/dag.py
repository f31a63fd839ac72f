# dag.py
from __future__ import annotations

from collections import deque
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import ConfigurationError
from .matrix import check_axis
from .model import JobNode


def build_dag(nodes: List[JobNode]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job graph as an arena keyed by job name.

    Returns:
      adj:   name -> names of jobs that need it (dependents)
      indeg: name -> number of distinct dependencies
    """
    names = [n.name for n in nodes]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError("Duplicate job names found", duplicates=", ".join(dupes))

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for node in nodes:
        check_axis(node)
        for need in node.needs:
            if need not in name_set:
                raise ConfigurationError(
                    f"Job '{node.name}' needs missing job '{need}'",
                    known_jobs=", ".join(sorted(name_set)),
                )
            if need == node.name:
                raise ConfigurationError(f"Job '{node.name}' needs itself")
            # edge need -> node (need runs before node)
            if node.name not in adj[need]:
                adj[need].add(node.name)
                indeg[node.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological levels.
    Jobs within a level have no edges between them.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ConfigurationError("Job graph has a cycle", stuck=", ".join(remaining))

    return levels


def transitive_dependents(adj: Dict[str, Set[str]], name: str) -> Set[str]:
    seen: Set[str] = set()
    stack = list(adj.get(name, ()))
    while stack:
        n = stack.pop()
        if n in seen:
            continue
        seen.add(n)
        stack.extend(adj.get(n, ()))
    return seen


def check_inputs(
    nodes: List[JobNode],
    adj: Dict[str, Set[str]],
    render: Callable[[JobNode, Optional[str], str], str],
) -> None:
    """
    Every artifact a job reads must come from one of its (transitive)
    dependencies: the relay is read only after the producer has succeeded.

    Producer names are the `outputs` keys and the names a publish action
    declares in `produces`, rendered per platform by `render(node, platform, name)`.
    """
    producers: Dict[str, Set[str]] = {}
    for node in nodes:
        names = list(node.outputs) + list(getattr(node.publish, "produces", ()))
        for platform in check_axis(node) or [None]:
            for name in names:
                producers.setdefault(render(node, platform, name), set()).add(node.name)

    for node in nodes:
        for platform in check_axis(node) or [None]:
            for raw in node.inputs:
                name = render(node, platform, raw)
                sources = producers.get(name, set())
                if not any(node.name in transitive_dependents(adj, p) for p in sources):
                    raise ConfigurationError(
                        f"Job '{node.name}' reads artifact '{name}' that none of its dependencies produce",
                        producers=", ".join(sorted(sources)) or "<none>",
                        hint="Add the producing job to `needs`.",
                    )
