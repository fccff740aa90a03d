# gateci_workflow.py
# Pipeline for this repository: the metric engine gate (style check + unit tests).
from __future__ import annotations

from gateci.pipelines.metric_engine import workflow

__all__ = ["workflow"]
