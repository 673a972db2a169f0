"""Orchestrator module for planning and executing reconciliation runs."""

from reconciler.orchestrator.references import ResolvedValues, find_references, reference_targets
from reconciler.orchestrator.dependency_graph import DependencyGraph, ResourceNode, build_graph
from reconciler.orchestrator.planner import (
    Action,
    Plan,
    PlanEntry,
    PlanWave,
    Planner
)
from reconciler.orchestrator.executor import (
    NodeResult,
    NodeStatus,
    PlanExecutor,
    ProgressCallback,
    RunReport,
    RunStatus,
    WaveResult
)
from reconciler.orchestrator.report import render_plan, render_report
from reconciler.orchestrator.orchestrator import Reconciler

__all__ = [
    # References
    'ResolvedValues',
    'find_references',
    'reference_targets',

    # Dependency graph
    'DependencyGraph',
    'ResourceNode',
    'build_graph',

    # Planning
    'Action',
    'Plan',
    'PlanEntry',
    'PlanWave',
    'Planner',

    # Execution
    'NodeResult',
    'NodeStatus',
    'PlanExecutor',
    'ProgressCallback',
    'RunReport',
    'RunStatus',
    'WaveResult',

    # Rendering
    'render_plan',
    'render_report',

    # Main orchestrator
    'Reconciler',
]
