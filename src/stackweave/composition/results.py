"""Result types for composition runs and plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class NodeFailure:
    """A node that was attempted and failed."""

    node: str
    error: BaseException

    @property
    def cause(self) -> str:
        return str(self.error)

    @property
    def error_type(self) -> str:
        return type(self.error).__name__


@dataclass
class RunReport:
    """How far provisioning progressed, node by node."""

    graph_name: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[NodeFailure] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    cancelled: List[str] = field(default_factory=list)
    untouched: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def status(self) -> RunStatus:
        if self.failed:
            return RunStatus.FAILED
        if self.cancelled or self.untouched:
            return RunStatus.CANCELLED
        return RunStatus.SUCCEEDED

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def failed_nodes(self) -> List[str]:
        return [failure.node for failure in self.failed]

    def failure_for(self, node: str) -> NodeFailure | None:
        for failure in self.failed:
            if failure.node == node:
                return failure
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": self.graph_name,
            "status": self.status.value,
            "succeeded": list(self.succeeded),
            "failed": [
                {"node": f.node, "error": f.error_type, "cause": f.cause} for f in self.failed
            ],
            "skipped": dict(self.skipped),
            "cancelled": list(self.cancelled),
            "untouched": list(self.untouched),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class ResultCollector:
    """Aggregates node outcomes during execution."""

    def __init__(self, graph_name: str) -> None:
        self._report = RunReport(graph_name=graph_name)

    def record_success(self, node: str) -> None:
        self._report.succeeded.append(node)

    def record_failure(self, node: str, error: BaseException) -> None:
        self._report.failed.append(NodeFailure(node=node, error=error))

    def record_skipped(self, node: str, root: str) -> None:
        self._report.skipped[node] = root

    def record_cancelled(self, node: str) -> None:
        self._report.cancelled.append(node)

    def finalize(self, duration: float, untouched: List[str] | None = None) -> RunReport:
        """Return the final report with duration set."""
        self._report.duration_seconds = duration
        self._report.untouched = list(untouched or [])
        return self._report


@dataclass
class PlanStep:
    """One node as it would be provisioned."""

    identity: str
    kind: str
    parent: str | None
    depends_on: List[str]
    inputs: Dict[str, Any]


@dataclass
class PlanResult:
    """Result of planning (dry-run) a composition."""

    graph_name: str
    steps: List[PlanStep] = field(default_factory=list)
    teardown: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_resources(self) -> int:
        return sum(1 for step in self.steps if step.kind != "component")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": self.graph_name,
            "steps": [
                {
                    "identity": s.identity,
                    "kind": s.kind,
                    "parent": s.parent,
                    "depends_on": s.depends_on,
                    "inputs": s.inputs,
                }
                for s in self.steps
            ],
            "teardown": self.teardown,
            "outputs": self.outputs,
            "total_resources": self.total_resources,
            "warnings": self.warnings,
        }
