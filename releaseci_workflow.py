# releaseci_workflow.py
# Workflow run by `releaseci run` in this directory: the stacks node
# build-and-release pipeline.
from __future__ import annotations

from releaseci.pipelines.stacks import VERSION_ARG, workflow

__all__ = ["VERSION_ARG", "workflow"]
