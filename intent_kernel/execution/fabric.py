"""
Execution Fabric — dispatches approved actions to file-store executors.

Behavioral Contract:
- Only ever called by the Interception Pipeline after pre-checks passed
- Treated by the pipeline as atomic; no retries at this layer
- Mutating executors honour a compare-and-swap precondition: the expected
  fingerprint of each target, captured at check time, is re-verified
  immediately before the write
- Returns a structured result dict; failures raise ExecutionError
"""

import logging
from typing import Callable, Dict, Optional

from intent_kernel.fingerprint.digest import fingerprint
from intent_kernel.models.pipeline import ActionRequest
from intent_kernel.workspace.store import WorkspaceStore

logger = logging.getLogger(__name__)

# executor(request, resource, expected_fingerprints) -> result dict
Executor = Callable[[ActionRequest, Optional[str], Dict[str, Optional[str]]], dict]


class ExecutionError(Exception):
    """Raised when an action fails to execute."""
    pass


class StaleWriteError(ExecutionError):
    """The resource changed between the freshness check and the write."""

    def __init__(self, resource: str, expected: Optional[str], current: Optional[str]):
        self.resource = resource
        self.expected = expected
        self.current = current
        super().__init__(
            f"{resource} changed before the write could be committed "
            f"(expected {(expected or 'absent')[:8]}, found {(current or 'absent')[:8]})"
        )


class ExecutionFabric:
    """
    Default executors for the common file tools. Hosts register their own
    executors for anything else (patch application, shell commands, ...).
    """

    def __init__(self, store: WorkspaceStore):
        self.store = store
        self._executors: Dict[str, Executor] = {}
        self._register_default_executors()

    def _register_default_executors(self) -> None:
        self._executors["read_file"] = self._read_file
        self._executors["write_to_file"] = self._write_to_file
        self._executors["delete_file"] = self._delete_file
        for name in ("apply_diff", "search_and_replace", "search_replace", "edit", "edit_file"):
            self._executors[name] = self._search_and_replace

    def register_executor(self, action_name: str, executor: Executor) -> None:
        """Register a custom executor for an action name."""
        self._executors[action_name] = executor

    def has_executor(self, action_name: str) -> bool:
        return action_name in self._executors

    def execute(
        self,
        request: ActionRequest,
        resource: Optional[str] = None,
        expected_fingerprints: Optional[Dict[str, Optional[str]]] = None,
    ) -> dict:
        executor = self._executors.get(request.name)
        if executor is None:
            raise ExecutionError(f"No executor registered for action: {request.name}")
        return executor(request, resource, expected_fingerprints or {})

    def _verify_unchanged(self, resource: str, expected: Dict[str, Optional[str]]) -> None:
        """Compare-and-swap guard. Targets without an expectation are not checked."""
        if resource not in expected:
            return
        try:
            current = fingerprint(self.store.read_bytes(resource))
        except OSError:
            current = None
        if current != expected[resource]:
            raise StaleWriteError(resource, expected[resource], current)

    @staticmethod
    def _require(resource: Optional[str], request: ActionRequest) -> str:
        if not resource:
            raise ExecutionError(f"{request.name} requires a target path")
        return resource

    # --- Default Executors ---

    def _read_file(self, request, resource, expected) -> dict:
        resource = self._require(resource, request)
        content = self.store.read_text(resource)
        if content is None:
            raise ExecutionError(f"File not found: {resource}")
        return {"path": resource, "content": content}

    def _write_to_file(self, request, resource, expected) -> dict:
        resource = self._require(resource, request)
        content = request.params.get("content")
        if content is None:
            raise ExecutionError("write_to_file requires a 'content' parameter")
        self._verify_unchanged(resource, expected)
        created = not self.store.exists(resource)
        self.store.write_text(resource, content)
        return {"path": resource, "created": created, "bytes": len(content.encode("utf-8"))}

    def _search_and_replace(self, request, resource, expected) -> dict:
        resource = self._require(resource, request)
        params = request.params
        search = params.get("search", params.get("old_string"))
        replace = params.get("replace", params.get("new_string", ""))
        if not search:
            raise ExecutionError(f"{request.name} requires a 'search' parameter")

        self._verify_unchanged(resource, expected)
        current = self.store.read_text(resource)
        if current is None:
            raise ExecutionError(f"File not found: {resource}")
        occurrences = current.count(search)
        if occurrences == 0:
            raise ExecutionError(f"Search text not found in {resource}")
        self.store.write_text(resource, current.replace(search, replace))
        return {"path": resource, "replacements": occurrences}

    def _delete_file(self, request, resource, expected) -> dict:
        resource = self._require(resource, request)
        self._verify_unchanged(resource, expected)
        if not self.store.delete(resource):
            raise ExecutionError(f"File not found: {resource}")
        return {"path": resource, "deleted": True}
