"""
Optimistic Concurrency Tracker — stale-read detection by content fingerprint.

Behavioral Contract:
- Reads record an observation per (task, resource); a new read overwrites.
- A write attempt is Fresh only if the resource's current fingerprint equals
  the stored baseline. A mismatch, or a resource that vanished or became
  unreadable since it was observed, is Stale.
- No baseline means Unobserved, which callers treat as "allow".
- Each task only writes its own observations. Clearing a task concurrently
  with a check is safe; the last observation may simply be discarded.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from intent_kernel.fingerprint.digest import fingerprint
from intent_kernel.models.tracking import (
    FreshnessReport,
    FreshnessStatus,
    TrackedObservation,
)

logger = logging.getLogger(__name__)


class ConcurrencyTracker:
    """Per-task map of {resource -> observation}, held in shared memory."""

    def __init__(self, read_resource: Callable[[str], bytes]):
        # read_resource raises OSError when the resource is missing or unreadable
        self._read_resource = read_resource
        self._observations: Dict[str, Dict[str, TrackedObservation]] = {}
        self._lock = threading.Lock()

    def record_observation(
        self,
        task_id: str,
        resource: str,
        content: Union[bytes, str],
        intent_id: Optional[str] = None,
    ) -> TrackedObservation:
        observation = TrackedObservation(
            resource=resource,
            fingerprint=fingerprint(content),
            observed_at=datetime.now(timezone.utc),
            intent_id=intent_id,
        )
        with self._lock:
            self._observations.setdefault(task_id, {})[resource] = observation
        logger.debug(
            "Task %s observing %s at %s", task_id, resource, observation.fingerprint[:8]
        )
        return observation

    def get_observation(self, task_id: str, resource: str) -> Optional[TrackedObservation]:
        with self._lock:
            return self._observations.get(task_id, {}).get(resource)

    def get_baseline_fingerprint(self, task_id: str, resource: str) -> Optional[str]:
        observation = self.get_observation(task_id, resource)
        return observation.fingerprint if observation else None

    def check_freshness(self, task_id: str, resource: str) -> FreshnessReport:
        """Compare the task's baseline for a resource against its current content."""
        baseline = self.get_baseline_fingerprint(task_id, resource)
        if baseline is None:
            return FreshnessReport(resource=resource, status=FreshnessStatus.UNOBSERVED)

        try:
            current = fingerprint(self._read_resource(resource))
        except OSError as e:
            logger.warning("Resource %s unreadable since observation: %s", resource, e)
            return FreshnessReport(
                resource=resource,
                status=FreshnessStatus.STALE,
                baseline_fingerprint=baseline,
            )

        if current != baseline:
            logger.warning(
                "Resource %s is STALE for task %s (observed %s, now %s)",
                resource, task_id, baseline[:8], current[:8],
            )
            status = FreshnessStatus.STALE
        else:
            status = FreshnessStatus.FRESH
        return FreshnessReport(
            resource=resource,
            status=status,
            baseline_fingerprint=baseline,
            current_fingerprint=current,
        )

    def untrack(self, task_id: str, resource: str) -> None:
        with self._lock:
            observations = self._observations.get(task_id)
            if observations:
                observations.pop(resource, None)

    def clear_task(self, task_id: str) -> None:
        with self._lock:
            self._observations.pop(task_id, None)
        logger.info("Cleared observations for task %s", task_id)

    def tracked_resources(self, task_id: str) -> List[str]:
        with self._lock:
            return sorted(self._observations.get(task_id, {}))

    def status(self, prefix: str = "") -> dict:
        """Resources under observation across all tasks."""
        with self._lock:
            total = sum(len(obs) for obs in self._observations.values())
            active = {
                resource
                for obs in self._observations.values()
                for resource in obs
                if resource.startswith(prefix)
            }
            return {
                "active_resources": sorted(active),
                "total_tracked": total,
                "tasks": len(self._observations),
            }
