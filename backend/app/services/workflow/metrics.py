"""
Workflow Metrics

Counters for workflow outcomes, injected into the service instead of kept
as process-wide state. Each increment is also emitted as a structured log
event so log pipelines can aggregate across processes.
"""
import logging
from collections import Counter
from typing import Dict, Protocol, Tuple

logger = logging.getLogger(__name__)

# Standard counter names
TRANSITION_SUCCEEDED = "transition_succeeded"
TRANSITION_REJECTED = "transition_rejected"
TRANSITION_CONFLICT = "transition_conflict"
ACCESS_DENIED = "access_denied"
ATTACHMENT_UPLOADED = "attachment_uploaded"
NOTIFICATION_FAILED = "notification_failed"


class WorkflowMetrics(Protocol):
    def increment(self, name: str, **labels: str) -> None: ...

    def snapshot(self) -> Dict[str, int]: ...


def _metric_key(name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    return name, tuple(sorted((k, str(v)) for k, v in labels.items()))


class InMemoryWorkflowMetrics:
    """Counters scoped to one instance. Share an instance to aggregate."""

    def __init__(self):
        self._counts: Counter = Counter()

    def increment(self, name: str, **labels: str) -> None:
        self._counts[_metric_key(name, labels)] += 1
        logger.debug(name, extra={"observability_event": name, **labels})

    def count(self, name: str, **labels: str) -> int:
        """Count for an exact label set, or the total across labels when none are given."""
        if labels:
            return self._counts[_metric_key(name, labels)]
        return sum(v for (n, _), v in self._counts.items() if n == name)

    def snapshot(self) -> Dict[str, int]:
        """Flattened view: ``name{k=v,...}`` -> count."""
        result = {}
        for (name, labels), value in self._counts.items():
            label_text = ",".join(f"{k}={v}" for k, v in labels)
            result[f"{name}{{{label_text}}}" if label_text else name] = value
        return result
