"""Per-form orchestration: discover, ask the oracle, fall back, commit, verify."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .backend import Handle, PageBackend
from .classifier import discover_fields
from .commit import FieldCommitter
from .config import DEFAULT_BOUNDS, FALLBACK_TEXT, Bounds
from .diagnostics import OutcomeLog, save_markup_snapshot, snapshot_name
from .errors import FormAgentError, MandatoryUnresolvedError, OracleAnswerInvalidError, OracleUnavailableError
from .fallback import FallbackAction, fallback_for, is_usable, prepare_sequential_answers
from .models import (
    AnswerValue,
    FieldAnswer,
    FieldKind,
    FieldResolution,
    FormOutcome,
    ResolutionResult,
    ResolutionSource,
    SequentialAnswer,
    SequentialQuestion,
)
from .options import OptionExtractor
from .oracle import OracleClient
from .profile import ProfileStore
from .selectors import DEFAULT_SELECTORS, FormSelectors
from .submission import SubmissionVerifier
from .terms import TermsSubflow

logger = logging.getLogger(__name__)


class FormResolver:
    """Drive one registration form from discovery to a verified submission.

    Page interactions are strictly sequential. Element handles captured during
    discovery may be stale after the oracle call, so every commit re-resolves
    its element through the label resolver first.
    """

    def __init__(
        self,
        backend: PageBackend,
        oracle: OracleClient,
        profile: ProfileStore,
        *,
        selectors: FormSelectors = DEFAULT_SELECTORS,
        bounds: Bounds = DEFAULT_BOUNDS,
        run_config: Optional[Mapping[str, str]] = None,
        outcome_log: Optional[OutcomeLog] = None,
        snapshot_dir: Optional[Path] = None,
        fallback_text: str = FALLBACK_TEXT,
    ) -> None:
        self.backend = backend
        self.oracle = oracle
        self.profile = profile
        self.selectors = selectors
        self.bounds = bounds
        self.run_config = dict(run_config or {})
        self.outcome_log = outcome_log
        self.snapshot_dir = snapshot_dir
        self.fallback_text = fallback_text
        self.extractor = OptionExtractor(backend, selectors, bounds, snapshot_dir)
        self.terms = TermsSubflow(backend, profile, selectors, bounds)
        self.verifier = SubmissionVerifier(backend, selectors, bounds)

    async def process(self, container: Optional[Handle] = None) -> FormOutcome:
        """Resolve every field of the form and submit it.

        Success requires every mandatory field to be committed with a non-null
        value and the container to disappear after submit. ``results`` is only
        populated on success.
        """
        if container is None:
            container = await self.backend.wait_for_selector(None, self.selectors.container, self.bounds.modal_ms)
        if container is None:
            logger.error("Form container %s not visible within %sms", self.selectors.container, self.bounds.modal_ms)
            return self._finish(FormOutcome(success=False, failure="form container not visible"))

        committer = FieldCommitter(self.backend, container, self.selectors, self.bounds)
        resolutions = await self._discover(container, committer)

        pending = [res for res in resolutions if res.source is ResolutionSource.UNRESOLVED]
        await self._extract_options(pending)

        answers = await self._ask_oracle(pending)
        for res in pending:
            if not answers:
                res.error = OracleUnavailableError.code
            await self._apply(res, answers.get(res.identifier), committer)
            await self.backend.pause(self.bounds.between_fields_ms)

        missing = [res.identifier for res in resolutions if res.request.is_mandatory and not res.is_satisfied]
        if missing:
            error = MandatoryUnresolvedError(missing)
            logger.error("telemetry:form_failed code=%s fields=%s", error.code, missing)
            await self._snapshot("mandatory_unresolved", {"fields": missing})
            return self._finish(FormOutcome(success=False, resolutions=resolutions, failure=str(error)))

        if not await self.verifier.submit(container):
            await self._snapshot("submit_unverified", {})
            return self._finish(FormOutcome(success=False, resolutions=resolutions, failure="submission not verified"))

        results: ResolutionResult = {res.identifier: res.value for res in resolutions}
        return self._finish(FormOutcome(success=True, results=results, resolutions=resolutions))

    async def _discover(self, container: Handle, committer: FieldCommitter) -> List[FieldResolution]:
        resolutions: List[FieldResolution] = []
        for field in await discover_fields(self.backend, container, self.selectors):
            res = FieldResolution(request=field.request)
            resolutions.append(res)
            if field.current_value:
                logger.info("Field '%s' already holds a value; keeping it", res.identifier)
                res.settle(ResolutionSource.PREFILLED, field.current_value)
                continue
            if res.request.kind is not FieldKind.TEXT:
                continue
            value = self.profile.lookup(res.identifier, res.request.name)
            if not value:
                continue
            try:
                applied = await committer.commit(res.request, value)
            except FormAgentError as exc:
                logger.warning("Profile fill for '%s' failed (%s); asking the oracle instead", res.identifier, exc)
                res.error = exc.code
                continue
            res.settle(ResolutionSource.PROFILE, applied)
        logger.info(
            "Discovered %s fields (%s mandatory, %s already settled)",
            len(resolutions),
            sum(1 for res in resolutions if res.request.is_mandatory),
            sum(1 for res in resolutions if res.source is not ResolutionSource.UNRESOLVED),
        )
        return resolutions

    async def _extract_options(self, pending: Sequence[FieldResolution]) -> None:
        for res in pending:
            request = res.request
            if not (request.kind.is_choice and request.is_direct_trigger and not request.options):
                continue
            options = await self.extractor.extract(request)
            res.request = request.with_options(options)

    async def _ask_oracle(self, pending: Sequence[FieldResolution]) -> Dict[str, FieldAnswer]:
        if not pending:
            return {}
        try:
            answers = await self.oracle.resolve_batch(
                [res.request for res in pending],
                self.profile,
                self.run_config.get("LLM_BATCH_CONTEXT"),
            )
        except Exception as exc:  # noqa: BLE001 - the oracle phase never aborts the form
            logger.warning("telemetry:oracle_unavailable reason=%s", exc)
            answers = {}
        if self.outcome_log is not None and len(answers) < len(pending):
            self.outcome_log.write(
                {
                    "event": "oracle_gaps",
                    "url": self.backend.url,
                    "requested": len(pending),
                    "answered": sorted(answers),
                }
            )
        return answers

    async def _apply(self, res: FieldResolution, answer: Optional[FieldAnswer], committer: FieldCommitter) -> None:
        request = res.request
        if not is_usable(request, answer):
            if answer is not None:
                res.error = OracleAnswerInvalidError.code
            await self._fall_back(res, committer)
            return

        res.answer = answer
        try:
            applied = await committer.commit(request, answer.value)
        except FormAgentError as exc:
            logger.warning("Committing oracle answer for '%s' failed: %s", res.identifier, exc)
            res.error = exc.code
            if not request.is_mandatory:
                res.settle(ResolutionSource.SKIPPED, None, committed=False)
                return
            # The toggle was already attempted with the desired state.
            await self._fall_back(res, committer, toggled=request.kind is FieldKind.BOOLEAN)
            return
        res.settle(ResolutionSource.ORACLE, applied)

    async def _fall_back(self, res: FieldResolution, committer: FieldCommitter, toggled: bool = False) -> None:
        decision = fallback_for(res.request, self.fallback_text)
        logger.info("Fallback for '%s': %s", res.identifier, decision.action.value)

        if decision.action is FallbackAction.LEAVE_NULL:
            res.settle(ResolutionSource.SKIPPED, None, committed=False)
            return
        if decision.action is FallbackAction.UNRESOLVABLE:
            res.fail(MandatoryUnresolvedError.code)
            return

        value: AnswerValue = decision.answer.value
        if decision.action is FallbackAction.TOGGLE:
            await self._toggle_or_sign(res, committer, toggled)
            return
        try:
            applied = await committer.commit(res.request, value)
        except FormAgentError as exc:
            logger.warning("Fallback commit for '%s' failed: %s", res.identifier, exc)
            res.fail(exc.code)
            return
        res.settle(ResolutionSource.FALLBACK, applied)

    async def _toggle_or_sign(self, res: FieldResolution, committer: FieldCommitter, toggled: bool) -> None:
        if not toggled:
            try:
                applied = await committer.commit(res.request, True)
            except FormAgentError as exc:
                logger.info("Checkbox '%s' did not flip (%s); looking for a terms dialog", res.identifier, exc)
            else:
                res.settle(ResolutionSource.FALLBACK, applied)
                return
        try:
            await self.terms.run(res.identifier)
        except FormAgentError as exc:
            logger.warning("Terms sub-flow for '%s' failed: %s", res.identifier, exc)
            res.fail(exc.code)
            return
        res.settle(ResolutionSource.FALLBACK, True)

    async def _snapshot(self, label: str, extra: Dict[str, Any]) -> None:
        if self.snapshot_dir is None:
            return
        await save_markup_snapshot(self.backend, self.snapshot_dir, snapshot_name("form", label), extra=extra)

    def _finish(self, outcome: FormOutcome) -> FormOutcome:
        logger.info(
            "Form outcome success=%s failure=%s fields=%s",
            outcome.success,
            outcome.failure,
            len(outcome.resolutions),
        )
        if self.outcome_log is not None:
            self.outcome_log.write(
                {
                    "event": "form_outcome",
                    "url": self.backend.url,
                    "success": outcome.success,
                    "failure": outcome.failure,
                    "fields": [res.summary() for res in outcome.resolutions],
                }
            )
        return outcome


async def answer_questions(
    oracle: OracleClient,
    questions: Sequence[SequentialQuestion],
    profile: ProfileStore,
    event_name: str = "",
) -> List[SequentialAnswer]:
    """Ordered question mode: one oracle call, defaults for every gap."""
    try:
        answers = await oracle.resolve_sequence(questions, profile, event_name)
    except Exception as exc:  # noqa: BLE001
        logger.warning("telemetry:oracle_unavailable reason=%s", exc)
        answers = None
    return prepare_sequential_answers(questions, answers)
