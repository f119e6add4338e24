"""
Interception Pipeline — the mandatory choke point for every agent action.

Per action: Received -> PreChecking -> {Blocked | Executing} -> PostProcessing -> Completed

Behavioral Contract:
- Intent selection bypasses every other check and goes to the registry.
- Lessons recorded to the configured knowledge base file bypass them too;
  lessons written anywhere else are governed like any other mutation.
- Read-like actions are always allowed; they record an observation of the
  resource so a later write can be checked for staleness.
- Mutating actions need, in order: an active intent for the task, every
  resolvable target inside that intent's scope, and a fresh baseline.
- Pre-checks have no side effects on the reject path.
- Blocks are returned as structured Rejections, never raised.
- Check, execution and ledger append run under per-resource locks, and the
  executor re-verifies the expected fingerprint before writing.
- After a successful mutation the result is fingerprinted, classified,
  appended to the ledger, and the task's baseline is re-recorded.
- A ledger failure is raised: the action is not reported as completed.
"""

import logging
import re
from typing import Dict, List, Optional

from intent_kernel.concurrency.locks import ResourceLockTable
from intent_kernel.concurrency.tracker import ConcurrencyTracker
from intent_kernel.execution.fabric import ExecutionError, ExecutionFabric, StaleWriteError
from intent_kernel.fingerprint.digest import changed_ranges, fingerprint
from intent_kernel.knowledge.lessons import LessonRecorder
from intent_kernel.ledger.classifier import MutationClassifier, build_classifier
from intent_kernel.ledger.store import MutationLedger
from intent_kernel.models.config import KernelConfig
from intent_kernel.models.intent import Intent
from intent_kernel.models.ledger import Contributor
from intent_kernel.models.pipeline import (
    ActionKind,
    ActionOutcome,
    ActionRequest,
    BlockKind,
    PipelineStage,
    PreCheckResult,
    Rejection,
)
from intent_kernel.models.tracking import FreshnessStatus
from intent_kernel.registry.intents import IntentNotFound, IntentRegistry
from intent_kernel.workspace.store import WorkspaceStore

logger = logging.getLogger(__name__)

_PATCH_HEADERS = [
    re.compile(r"^\*\*\* (?:Add|Update|Delete) File:\s*(.+?)\s*$", re.M),
    re.compile(r"^\*\*\* Move to:\s*(.+?)\s*$", re.M),
    re.compile(r"^\+\+\+ (?:b/)?(.+?)\s*$", re.M),
]
_PATCH_PARAMS = ("patch", "diff", "input")


def _stale_rejection(resource: str, baseline: Optional[str], current: Optional[str]) -> Rejection:
    return Rejection(
        kind=BlockKind.STALE_RESOURCE,
        message=(
            f'Stale File Error: "{resource}" has been modified since you read it. '
            f"A parallel agent or human may have made changes."
        ),
        remediation="Re-read the file to get the latest content before writing to it.",
        details={
            "resource": resource,
            "baseline_fingerprint": baseline,
            "current_fingerprint": current,
        },
    )


def _describe_intent(intent: Intent) -> str:
    lines = [f'Active intent set to: "{intent.name}" ({intent.id})']
    if intent.description:
        lines += ["", intent.description]
    lines += ["", "Owned scope:"] + [f"- {p}" for p in intent.owned_scope]
    if intent.constraints:
        lines += ["", "Constraints:"] + [f"- {c}" for c in intent.constraints]
    if intent.acceptance_criteria:
        lines += ["", "Acceptance criteria:"] + [f"- {c}" for c in intent.acceptance_criteria]
    return "\n".join(lines)


class InterceptionPipeline:
    """
    Orchestrates registry, tracker, executor and ledger around each action.

    One pipeline per session; it is the explicit context object that holds
    every piece of governance state, so nothing leaks across sessions.
    """

    def __init__(
        self,
        registry: IntentRegistry,
        tracker: ConcurrencyTracker,
        ledger: MutationLedger,
        store: WorkspaceStore,
        fabric: Optional[ExecutionFabric] = None,
        classifier: Optional[MutationClassifier] = None,
        config: Optional[KernelConfig] = None,
        lessons: Optional[LessonRecorder] = None,
        locks: Optional[ResourceLockTable] = None,
    ):
        self.config = config or KernelConfig()
        self.registry = registry
        self.tracker = tracker
        self.ledger = ledger
        self.store = store
        self.fabric = fabric or ExecutionFabric(store)
        self.classifier = classifier or build_classifier(
            self.config.classifier, self.config.evolution_threshold
        )
        self.lessons = lessons or LessonRecorder(store, self.config.lessons_filename)
        self.locks = locks or ResourceLockTable()

    # --- Classification and target resolution ---

    def classify_action(self, name: str) -> ActionKind:
        if name == self.config.select_intent_action:
            return ActionKind.SELECT_INTENT
        if name == self.config.record_lesson_action:
            return ActionKind.RECORD_LESSON
        if name in self.config.mutating_actions:
            return ActionKind.MUTATE
        if name in self.config.read_actions:
            return ActionKind.READ
        return ActionKind.OTHER

    def resolve_targets(self, request: ActionRequest) -> List[str]:
        """
        Canonical target resources of an action.

        A path parameter names exactly one target. Patch text may name
        several; anything else resolves to no target at all.
        """
        params = request.params
        for key in self.config.path_params:
            value = params.get(key)
            if isinstance(value, str) and value.strip():
                return [self.store.canonicalize(value.strip())]

        for key in _PATCH_PARAMS:
            patch = params.get(key)
            if isinstance(patch, str) and patch:
                found = set()
                for pattern in _PATCH_HEADERS:
                    for match in pattern.finditer(patch):
                        path = match.group(1)
                        if path != "/dev/null":
                            found.add(self.store.canonicalize(path))
                return sorted(found)
        return []

    # --- Pre-checks ---

    def pre_check(self, request: ActionRequest) -> PreCheckResult:
        """Run the pre-checks only, for hosts that execute actions themselves."""
        return self._pre_check(request, self.resolve_targets(request))

    def _pre_check(self, request: ActionRequest, targets: List[str]) -> PreCheckResult:
        kind = self.classify_action(request.name)
        active = self.registry.get_active_intent(request.task_id)
        intent_id = active.id if active else None

        if kind in (ActionKind.SELECT_INTENT, ActionKind.RECORD_LESSON, ActionKind.OTHER):
            return PreCheckResult(kind=kind, allowed=True, targets=targets, intent_id=intent_id)

        if kind == ActionKind.READ:
            if self.config.track_reads:
                for resource in targets:
                    self._observe(request.task_id, resource, intent_id)
            return PreCheckResult(kind=kind, allowed=True, targets=targets, intent_id=intent_id)

        return self._check_mutation(request, targets, active)

    def _observe(self, task_id: str, resource: str, intent_id: Optional[str]) -> None:
        try:
            content = self.store.read_bytes(resource)
        except OSError:
            return      # Nothing to baseline against
        self.tracker.record_observation(task_id, resource, content, intent_id)

    def _current_fingerprint(self, resource: str) -> Optional[str]:
        try:
            return fingerprint(self.store.read_bytes(resource))
        except OSError:
            return None

    def _check_mutation(
        self,
        request: ActionRequest,
        targets: List[str],
        active: Optional[Intent],
    ) -> PreCheckResult:
        def block(rejection: Rejection) -> PreCheckResult:
            return PreCheckResult(
                kind=ActionKind.MUTATE,
                allowed=False,
                targets=targets,
                intent_id=active.id if active else None,
                rejection=rejection,
            )

        # 1. Active intent
        if active is None and self.config.require_active_intent:
            return block(Rejection(
                kind=BlockKind.NO_ACTIVE_INTENT,
                message=f"{request.name} is a mutating action and task {request.task_id} has no active intent.",
                remediation=f"Call {self.config.select_intent_action} with a declared intent id before modifying files.",
            ))

        policy = self.config.multi_target_policy
        if len(targets) != 1 and policy == "block":
            return block(Rejection(
                kind=BlockKind.OUT_OF_SCOPE,
                message=f"{request.name} does not name exactly one resolvable target ({len(targets)} found).",
                remediation="Split the change into one action per file.",
                details={"targets": targets},
            ))

        # 2. Scope
        if active is not None:
            outside = [t for t in targets if not self.registry.is_in_scope(active, t)]
            if outside:
                return block(Rejection(
                    kind=BlockKind.OUT_OF_SCOPE,
                    message=(
                        f"{', '.join(outside)} is outside the scope of intent "
                        f"{active.id} ({active.name})."
                    ),
                    remediation=(
                        "Only modify files matching the intent's owned scope, "
                        "or select an intent that owns these files."
                    ),
                    details={
                        "resources": outside,
                        "intent_id": active.id,
                        "owned_scope": list(active.owned_scope),
                    },
                ))

        # 3. Freshness. Multi-target actions are only checked when decomposed.
        checked = targets if len(targets) == 1 or policy == "decompose" else []
        expected: Dict[str, Optional[str]] = {}
        for resource in checked:
            report = self.tracker.check_freshness(request.task_id, resource)
            if report.status == FreshnessStatus.STALE:
                return block(_stale_rejection(
                    resource, report.baseline_fingerprint, report.current_fingerprint
                ))
            expected[resource] = (
                report.current_fingerprint
                if report.status == FreshnessStatus.FRESH
                else self._current_fingerprint(resource)
            )

        if len(targets) > 1 and policy == "skip":
            logger.debug("Freshness not checked for multi-target %s: %s", request.name, targets)

        return PreCheckResult(
            kind=ActionKind.MUTATE,
            allowed=True,
            targets=targets,
            intent_id=active.id if active else None,
            expected_fingerprints=expected,
        )

    # --- Full action lifecycle ---

    def run(self, request: ActionRequest) -> ActionOutcome:
        """
        Take an action through the whole pipeline.

        Raises ConfigUnavailable when intents cannot be loaded and
        PersistenceFailure when the ledger cannot be written.
        """
        kind = self.classify_action(request.name)
        if kind == ActionKind.SELECT_INTENT:
            return self._select_intent(request)
        if kind == ActionKind.RECORD_LESSON:
            return self._record_lesson(request)

        targets = self.resolve_targets(request)
        with self.locks.hold(targets):
            check = self._pre_check(request, targets)
            if not check.allowed:
                return self._blocked(request, check.kind, check.rejection, check.intent_id)

            before: Dict[str, Optional[str]] = {}
            if kind == ActionKind.MUTATE:
                before = {t: self.store.read_text(t, errors="replace") for t in targets}

            try:
                result = self.fabric.execute(
                    request,
                    targets[0] if len(targets) == 1 else None,
                    check.expected_fingerprints,
                )
            except StaleWriteError as e:
                rejection = _stale_rejection(
                    e.resource, self.tracker.get_baseline_fingerprint(request.task_id, e.resource), e.current
                )
                return self._blocked(request, kind, rejection, check.intent_id)
            except ExecutionError as e:
                logger.warning("Execution of %s for task %s failed: %s", request.name, request.task_id, e)
                return ActionOutcome(
                    action=request.name,
                    task_id=request.task_id,
                    kind=kind,
                    stage=PipelineStage.FAILED,
                    error=str(e),
                    intent_id=check.intent_id,
                )

            entry_ids: List[str] = []
            if kind == ActionKind.MUTATE:
                entry_ids = self._post_process(request, check, before)

        return ActionOutcome(
            action=request.name,
            task_id=request.task_id,
            kind=kind,
            stage=PipelineStage.COMPLETED,
            result=result,
            intent_id=check.intent_id,
            ledger_entry_ids=entry_ids,
        )

    def _post_process(
        self,
        request: ActionRequest,
        check: PreCheckResult,
        before: Dict[str, Optional[str]],
    ) -> List[str]:
        if not check.targets:
            logger.warning(
                "%s by task %s has no resolvable target; nothing recorded in the ledger",
                request.name, request.task_id,
            )
            return []

        contributor = Contributor(
            entity_type=self.config.contributor_kind,
            model_identifier=request.model_identifier or self.config.model_identifier,
        )
        entry_ids = []
        for resource in check.targets:
            after = self.store.read_text(resource, errors="replace")
            observation = self.tracker.get_observation(request.task_id, resource)
            intent_changed = request.intent_changed or bool(
                observation
                and observation.intent_id
                and check.intent_id
                and observation.intent_id != check.intent_id
            )
            mutation_class = self.classifier.classify(
                resource, before.get(resource), after, intent_changed
            )
            entry_ids.append(self.ledger.append(
                resource=resource,
                ranges=changed_ranges(before.get(resource), after),
                contributor=contributor,
                mutation_class=mutation_class,
                intent_id=check.intent_id,
                revision_id=request.revision_id,
            ))

            # Re-baseline so the same task can write again without a false stale block
            if after is None:
                self.tracker.untrack(request.task_id, resource)
            else:
                self._observe(request.task_id, resource, check.intent_id)
        return entry_ids

    def _blocked(
        self,
        request: ActionRequest,
        kind: ActionKind,
        rejection: Rejection,
        intent_id: Optional[str],
    ) -> ActionOutcome:
        logger.warning(
            "Blocked %s for task %s: %s", request.name, request.task_id, rejection.kind.value
        )
        return ActionOutcome(
            action=request.name,
            task_id=request.task_id,
            kind=kind,
            stage=PipelineStage.BLOCKED,
            rejection=rejection,
            message=f"{rejection.message} {rejection.remediation}",
            intent_id=intent_id,
        )

    # --- Governance-exempt actions ---

    def _select_intent(self, request: ActionRequest) -> ActionOutcome:
        intent_id = request.params.get("intent_id")
        try:
            if not intent_id:
                raise IntentNotFound(
                    "", [i.id for i in self.registry.list_intents()], reason="was not given"
                )
            intent = self.registry.select_intent(request.task_id, intent_id)
        except IntentNotFound as e:
            rejection = Rejection(
                kind=BlockKind.INTENT_NOT_FOUND,
                message=str(e) if intent_id else "The intent_id parameter is required.",
                remediation="Select one of the available intent ids.",
                details={"intent_id": intent_id, "valid_ids": e.valid_ids},
            )
            return self._blocked(request, ActionKind.SELECT_INTENT, rejection, None)

        return ActionOutcome(
            action=request.name,
            task_id=request.task_id,
            kind=ActionKind.SELECT_INTENT,
            stage=PipelineStage.COMPLETED,
            message=_describe_intent(intent),
            result=intent.model_dump(mode="json"),
            intent_id=intent.id,
        )

    def _record_lesson(self, request: ActionRequest) -> ActionOutcome:
        """
        Only the configured knowledge base file is exempt from governance.
        Any other lessons file is checked and recorded like a mutation.
        """
        params = request.params
        resource = self.lessons.resolve(params.get("file_path"))
        with self.locks.hold([resource]):
            check: Optional[PreCheckResult] = None
            if not self.lessons.is_default(resource):
                check = self._check_mutation(
                    request, [resource], self.registry.get_active_intent(request.task_id)
                )
                if not check.allowed:
                    return self._blocked(request, ActionKind.RECORD_LESSON, check.rejection, check.intent_id)

            before = self.store.read_text(resource, errors="replace")
            try:
                result = self.lessons.record(
                    lesson=params.get("lesson", ""),
                    task_id=request.task_id,
                    category=params.get("category", "general"),
                    file_path=resource,
                )
            except (ValueError, OSError) as e:
                return ActionOutcome(
                    action=request.name,
                    task_id=request.task_id,
                    kind=ActionKind.RECORD_LESSON,
                    stage=PipelineStage.FAILED,
                    error=str(e),
                    intent_id=check.intent_id if check else None,
                )

            entry_ids: List[str] = []
            if check is not None:
                entry_ids = self._post_process(request, check, {resource: before})

        return ActionOutcome(
            action=request.name,
            task_id=request.task_id,
            kind=ActionKind.RECORD_LESSON,
            stage=PipelineStage.COMPLETED,
            message=f"Lesson recorded in {result['path']} ({result['category']}).",
            result=result,
            intent_id=check.intent_id if check else None,
            ledger_entry_ids=entry_ids,
        )

    def end_task(self, task_id: str) -> None:
        """Session teardown for one task: drop its observations and its intent."""
        self.tracker.clear_task(task_id)
        self.registry.release(task_id)
