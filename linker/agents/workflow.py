"""
Bug Workflows
=============
End-to-end handlers behind the webhook and trigger endpoints.

    handle_bug_created   — match the bug, fail the matched test(s), comment
    handle_bug_resolved  — pass every test carrying the bug, via the gate
    handle_bug_reopened  — fail the bug's tests again
    handle_correction    — apply a CORRECT:/ADD: comment and learn from it

Every handler returns a WorkflowResult. LinkerError (including adapter
IssueTrackerError / TestManagementError) is caught at the top of each
handler, reported on the bug as a ``❌`` comment and returned with
success=False. Anything else propagates to the HTTP layer.
"""
import asyncio
import logging
from functools import partial
from typing import List, Optional

from pydantic import BaseModel, Field

from linker.agents.matching_engine import MatchingEngine
from linker.agents.open_defect_gate import OpenDefectGate
from linker.clients.base import STATUS_FAILED, TestManagementClient
from linker.core import config
from linker.core.errors import LinkerError, NoCandidates, RunNotFound
from linker.models.bug_report import BugReport
from linker.models.match import Match
from linker.models.open_defects import OpenDefect
from linker.models.test_case import TestCaseCandidate
from linker.parser.correction_parser import MODE_ADD, parse_correction
from linker.services.correction_store import CorrectionStore

logger = logging.getLogger(__name__)

# Per-test actions
FAILED = "failed"
ALREADY_LINKED = "already_linked"
ALREADY_FAILED = "already_failed"
PASSED = "passed"
ALREADY_PASSED = "already_passed"
BLOCKED = "blocked"
ERROR = "error"


class LinkOutcome(BaseModel):
    test_id: str
    case_id: str = ""
    title: str = ""
    action: str
    open_bugs: List[OpenDefect] = Field(default_factory=list)
    error: Optional[str] = None


class WorkflowResult(BaseModel):
    workflow: str
    issue_key: str
    success: bool
    run_id: Optional[str] = None
    mode: Optional[str] = None
    matches: List[Match] = Field(default_factory=list)
    outcomes: List[LinkOutcome] = Field(default_factory=list)
    superseded_test_ids: List[str] = Field(default_factory=list)
    missing_case_ids: List[str] = Field(default_factory=list)
    error_code: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False


def _pct(confidence: float) -> str:
    return f"{confidence * 100:.1f}%"


class BugWorkflow:
    """
    Usage:
        workflow = BugWorkflow(tracker=jira, tm_client=testrail, engine=engine, store=store)
        result = await workflow.handle_bug_created("ROLL-1396")
    """

    def __init__(
        self,
        tracker,
        tm_client: TestManagementClient,
        engine: MatchingEngine,
        store: CorrectionStore,
        gate: Optional[OpenDefectGate] = None,
        dry_run: bool = config.DRY_RUN_MODE,
    ) -> None:
        self.tracker = tracker
        self.tm = tm_client
        self.engine = engine
        self.store = store
        self.gate = gate or OpenDefectGate(tm_client, tracker)
        self.dry_run = dry_run

    async def close(self) -> None:
        await self.tm.close()
        await self.tracker.close()
        close_llm = getattr(self.engine.llm, "close", None)
        if close_llm is not None:
            await close_llm()

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------
    async def _comment(self, key: str, text: str) -> None:
        """Post a comment; a tracker failure here is logged, never raised."""
        try:
            await self.tracker.add_comment(key, text)
        except LinkerError as e:
            logger.error("Failed to post comment on %s: %s", key, e.message)

    async def _failure(self, workflow: str, key: str, error: LinkerError) -> WorkflowResult:
        logger.error("%s workflow failed for %s: %s", workflow, key, error.message)
        await self._comment(key, f"❌ Error: {error.message}")
        return WorkflowResult(
            workflow=workflow,
            issue_key=key,
            success=False,
            error_code=error.code,
            error=error.message,
            dry_run=self.dry_run,
        )

    async def _resolve_run(self, key: str) -> str:
        run_id = await self.tm.find_run_id(key)
        if not run_id:
            raise RunNotFound(
                f"Could not find {self.tm.system_name} {self.tm.run_label} ID. "
                f"Please add it to the parent task comments or custom field."
            )
        logger.info("Found %s %s: %s", self.tm.system_name, self.tm.run_label, run_id)
        return run_id

    async def _candidates(self, run_id: str) -> List[TestCaseCandidate]:
        candidates = await self.tm.get_tests_with_details(run_id)
        if not candidates:
            raise NoCandidates(f"No test cases found in {self.tm.run_label} {run_id}")
        logger.info("Found %d test cases in %s %s", len(candidates), self.tm.run_label, run_id)
        return candidates

    async def _match(self, bug: BugReport, run_id: str) -> List[Match]:
        candidates = await self._candidates(run_id)
        return await self.engine.match(
            bug, candidates, section_lookup=partial(self.tm.get_section_names, run_id)
        )

    async def _link(
        self, key: str, run_id: str, test_id: str, case_id: str, title: str, comment: str
    ) -> LinkOutcome:
        """Fail *test_id* with *key* attached unless it already carries the bug."""
        if await self.tm.is_bug_already_linked(test_id, key, run_id):
            logger.info("Bug %s is already linked to test %s, skipping update", key, test_id)
            return LinkOutcome(test_id=test_id, case_id=case_id, title=title, action=ALREADY_LINKED)
        await self.tm.mark_failed(test_id, run_id, comment, [key])
        return LinkOutcome(test_id=test_id, case_id=case_id, title=title, action=FAILED)

    # ------------------------------------------------------------------
    # Bug created
    # ------------------------------------------------------------------
    async def handle_bug_created(self, key: str) -> WorkflowResult:
        logger.info("Starting Bug Created workflow for %s", key)
        try:
            return await self._bug_created(key)
        except LinkerError as e:
            return await self._failure("bug_created", key, e)

    async def _bug_created(self, key: str) -> WorkflowResult:
        bug = await self.tracker.get_bug_report(key)
        logger.info("Bug: %s", bug.summary)
        run_id = await self._resolve_run(key)
        matches = await self._match(bug, run_id)
        logger.info("Processing %d test case match(es)", len(matches))

        outcomes = []
        for match in matches:
            outcomes.append(await self._link(
                key, run_id, match.test_id, match.case_id, match.title,
                f"Bug filed: {key} - {bug.summary}",
            ))

        if len(matches) == 1:
            match, outcome = matches[0], outcomes[0]
            if not self.engine.is_confident_match(match):
                logger.warning("Low confidence match for %s: %.2f", key, match.confidence)
                await self._comment(key, self._low_confidence_comment(match))
            await self._comment(key, self._created_comment(match, outcome, run_id))
        else:
            await self._comment(key, self._multi_created_comment(matches, outcomes, run_id))

        logger.info("Bug Created workflow completed for %s with %d match(es)", key, len(matches))
        return WorkflowResult(
            workflow="bug_created",
            issue_key=key,
            success=True,
            run_id=run_id,
            matches=matches,
            outcomes=outcomes,
            dry_run=self.dry_run,
        )

    def _low_confidence_comment(self, match: Match) -> str:
        return "\n".join([
            f"⚠️ AI Match (Low Confidence: {_pct(match.confidence)})",
            "",
            f"Matched to: {match.title}",
            f"Test ID: {match.test_id}",
            f"Reasoning: {match.reasoning}",
            "",
            "⚠️ Please verify this match is correct. If incorrect, reply with:",
            "CORRECT: C<case_id>  (replace this match)",
            "ADD: C<case_id>  (keep this match and add another)",
        ])

    def _created_comment(self, match: Match, outcome: LinkOutcome, run_id: str) -> str:
        already = outcome.action == ALREADY_LINKED
        lines = [
            f"✅ {self.tm.system_name} Updated",
            "",
            f"Test Case: {match.title}",
            f"Status: {'Already Linked' if already else 'Failed'}",
            f"{self.tm.run_label}: {run_id}",
            f"Test ID: {match.test_id}",
            "🎯 Auto-matched" if match.auto_matched else f"AI Confidence: {_pct(match.confidence)}",
            f"Reasoning: {match.reasoning}",
            "",
        ]
        if match.auto_matched:
            lines.append("✨ Automatically matched - only test case in matching section")
        if match.learned:
            lines.append("🧠 Match based on previous learning")
        if already:
            lines.append("⚠️ Bug was already linked to this test case")
        if self.dry_run:
            lines.append(f"🔍 DRY RUN MODE - No actual {self.tm.system_name} update")
        return "\n".join(lines).rstrip()

    def _multi_created_comment(self, matches: List[Match], outcomes: List[LinkOutcome], run_id: str) -> str:
        entries = []
        for index, (match, outcome) in enumerate(zip(matches, outcomes), start=1):
            status = "⚠️ Already Linked" if outcome.action == ALREADY_LINKED else "✅ Failed"
            entries.append(
                f"{index}. {status} - {match.title}\n"
                f"   Test ID: {match.test_id} | Confidence: {_pct(match.confidence)}\n"
                f"   Issue: {match.reasoning}"
            )
        linked = sum(1 for o in outcomes if o.action == FAILED)
        lines = [
            f"✅ {self.tm.system_name} Updated - Multiple Matches",
            "",
            f"This bug contains multiple accessibility issues. Linked to {len(matches)} test case(s):",
            "",
            "\n\n".join(entries),
            "",
            f"{self.tm.run_label}: {run_id}",
            f"Tests Linked: {linked} | Already Linked: {len(outcomes) - linked}",
        ]
        if self.engine.multi_match:
            lines.append("🎯 Multi-match mode enabled")
        if self.dry_run:
            lines.append(f"🔍 DRY RUN MODE - No actual {self.tm.system_name} update")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Bug resolved
    # ------------------------------------------------------------------
    async def handle_bug_resolved(self, key: str) -> WorkflowResult:
        logger.info("Starting Bug Resolved workflow for %s", key)
        try:
            return await self._bug_resolved(key)
        except LinkerError as e:
            return await self._failure("bug_resolved", key, e)

    async def _bug_resolved(self, key: str) -> WorkflowResult:
        run_id = await self._resolve_run(key)
        tests = [(t.test_id, t.case_id, t.title) for t in await self.tm.find_tests_with_bug(run_id, key)]
        if not tests:
            logger.info("No tests carry %s in %s, falling back to learning data", key, self.tm.system_name)
            learned = await asyncio.to_thread(self.store.get_test_cases_by_bug_key, key)
            tests = [(t.test_id, t.case_id, t.title) for t in learned]
        if not tests:
            raise NoCandidates(
                f"Could not find any test cases with this bug linked in {self.tm.system_name}. "
                f"Was this bug processed through the Bug Created workflow?"
            )

        bug = await self.tracker.get_bug_report(key)
        outcomes = []
        for test_id, case_id, title in tests:
            try:
                transition = await self.gate.mark_passed_if_clear(
                    test_id, key, run_id, reason=f"Bug resolved: {key} - {bug.summary}"
                )
            except LinkerError as e:
                logger.error("Failed to update test %s: %s", test_id, e.message)
                outcomes.append(LinkOutcome(
                    test_id=test_id, case_id=case_id, title=title, action=ERROR, error=e.message,
                ))
                continue
            outcomes.append(LinkOutcome(
                test_id=test_id,
                case_id=case_id,
                title=title,
                action=transition.outcome,
                open_bugs=transition.open_bugs,
            ))

        await self._comment(key, self._resolved_comment(outcomes))
        logger.info("Bug Resolved workflow completed for %s", key)
        return WorkflowResult(
            workflow="bug_resolved",
            issue_key=key,
            success=True,
            run_id=run_id,
            outcomes=outcomes,
            dry_run=self.dry_run,
        )

    def _resolved_comment(self, outcomes: List[LinkOutcome]) -> str:
        system = self.tm.system_name
        if len(outcomes) == 1:
            outcome = outcomes[0]
            if outcome.action == ALREADY_PASSED:
                return (
                    f"✅ {system} Already Passed\n\n"
                    f"Test {outcome.test_id} is already marked as Passed, no update needed."
                )
            if outcome.action == BLOCKED:
                bugs = "\n".join(f"- {b.key}: {b.status} - {b.summary}" for b in outcome.open_bugs)
                return f"✅ {system} Updated\n\nTest {outcome.test_id} still has active bugs:\n{bugs}"
            if outcome.action == ERROR:
                return f"❌ Could not update test {outcome.test_id}: {outcome.error}"
            return f"✅ {system} Marked as Passed\n\nTest {outcome.test_id} marked as Passed."

        lines = []
        for outcome in outcomes:
            if outcome.action == ALREADY_PASSED:
                lines.append(f"• Test {outcome.test_id}: Already Passed")
            elif outcome.action == BLOCKED:
                lines.append(f"• Test {outcome.test_id}: Still Failed ({len(outcome.open_bugs)} active bug(s))")
            elif outcome.action == ERROR:
                lines.append(f"• Test {outcome.test_id}: Not updated ({outcome.error})")
            else:
                lines.append(f"• Test {outcome.test_id}: Marked as Passed")
        passed = sum(1 for o in outcomes if o.action in (PASSED, ALREADY_PASSED))
        failed = sum(1 for o in outcomes if o.action == BLOCKED)
        return (
            f"✅ {system} Updated - Multiple Tests\n\n" + "\n".join(lines)
            + f"\n\nPassed: {passed} | Still Failed: {failed}"
        )

    # ------------------------------------------------------------------
    # Bug reopened
    # ------------------------------------------------------------------
    async def handle_bug_reopened(self, key: str) -> WorkflowResult:
        logger.info("Starting Bug Re-opened workflow for %s", key)
        try:
            return await self._bug_reopened(key)
        except LinkerError as e:
            return await self._failure("bug_reopened", key, e)

    async def _bug_reopened(self, key: str) -> WorkflowResult:
        run_id = await self._resolve_run(key)
        matches: List[Match] = []
        linked = await asyncio.to_thread(self.store.get_test_cases_by_bug_key, key)
        if linked:
            logger.info("Found %d previously linked test case(s) for %s", len(linked), key)
            targets = [(t.test_id, t.case_id, t.title) for t in linked]
        else:
            logger.warning("No previously linked test cases found for %s, falling back to AI matching", key)
            bug = await self.tracker.get_bug_report(key)
            matches = await self._match(bug, run_id)
            targets = [(m.test_id, m.case_id, m.title) for m in matches]

        comment = f"Bug {key} re-opened and moved back to {config.STATUS_READY_FOR_DEV}"
        outcomes = []
        for test_id, case_id, title in targets:
            try:
                history = await self.tm.get_result_history(test_id, run_id)
                if history and history[0].status == STATUS_FAILED and any(key in h.defects for h in history):
                    logger.info("Test %s is already Failed with bug %s, skipping", test_id, key)
                    action = ALREADY_FAILED
                else:
                    logger.info("Re-failing test %s: %s", test_id, title)
                    await self.tm.mark_failed(test_id, run_id, comment, [key])
                    action = FAILED
            except LinkerError as e:
                logger.error("Failed to update test %s: %s", test_id, e.message)
                outcomes.append(LinkOutcome(
                    test_id=test_id, case_id=case_id, title=title, action=ERROR, error=e.message,
                ))
                continue
            outcomes.append(LinkOutcome(test_id=test_id, case_id=case_id, title=title, action=action))

        await self._comment(key, self._reopened_comment(outcomes, matches))
        return WorkflowResult(
            workflow="bug_reopened",
            issue_key=key,
            success=True,
            run_id=run_id,
            matches=matches,
            outcomes=outcomes,
            dry_run=self.dry_run,
        )

    def _reopened_comment(self, outcomes: List[LinkOutcome], matches: List[Match]) -> str:
        header = "🔄 Bug Re-opened - Test Cases Updated"
        if matches:
            header += " (AI Matched)"
        parts = [header]

        updated = [o for o in outcomes if o.action == FAILED]
        skipped = [o for o in outcomes if o.action == ALREADY_FAILED]
        if updated:
            listing = "\n".join(f"• {o.title} (Test ID: {o.test_id})" for o in updated)
            parts.append(f"{len(updated)} test case(s) marked as Failed:\n{listing}")
        if skipped:
            listing = "\n".join(f"• {o.title} (Test ID: {o.test_id})" for o in skipped)
            parts.append(f"{len(skipped)} test case(s) already Failed with this bug:\n{listing}")
        if matches:
            auto = len(matches) == 1 and matches[0].auto_matched
            parts.append("🎯 Auto-matched based on section" if auto else "🤖 AI matched")
        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Correction
    # ------------------------------------------------------------------
    async def handle_correction(self, key: str, text: str) -> WorkflowResult:
        logger.info("Processing correction for %s", key)
        try:
            return await self._correction(key, text)
        except LinkerError as e:
            return await self._failure("correction", key, e)

    async def _correction(self, key: str, text: str) -> WorkflowResult:
        request = parse_correction(text)
        logger.info(
            "Processing %d correct case ID(s) in %s mode: %s",
            len(request.case_ids), request.mode, ", ".join(request.case_ids),
        )
        bug = await self.tracker.get_bug_report(key)
        run_id = await self._resolve_run(key)
        candidates = await self._candidates(run_id)

        by_case = {c.case_id: c for c in candidates}
        resolved = [by_case[cid] for cid in request.case_ids if cid in by_case]
        missing = [cid for cid in request.case_ids if cid not in by_case]
        for cid in missing:
            logger.warning("Test case C%s not found in %s %s", cid, self.tm.run_label, run_id)
        if not resolved:
            raise NoCandidates(
                f"None of the specified test cases found in {self.tm.run_label} {run_id}: "
                + ", ".join(f"C{cid}" for cid in missing)
            )

        previous = await asyncio.to_thread(self.store.get_test_cases_by_bug_key, key)
        outcomes = []
        for index, test in enumerate(resolved):
            await asyncio.to_thread(
                self.store.store_correction,
                bug, test.test_id, test.case_id, test.title,
                replaces_previous=request.replaces and index == 0,
            )
            outcomes.append(await self._link(
                key, run_id, test.test_id, test.case_id, test.title,
                f"Bug filed (corrected): {key} - {bug.summary}",
            ))

        superseded: List[str] = []
        if request.replaces:
            corrected = {t.test_id for t in resolved}
            superseded = [p.test_id for p in previous if p.test_id not in corrected]
            if superseded:
                logger.info(
                    "Bug was previously linked to %d other test(s): %s; old results remain in history",
                    len(superseded), ", ".join(superseded),
                )

        await self._comment(key, self._correction_comment(request.mode, outcomes, superseded, missing, run_id))
        logger.info("Correction processed for %s: %d test(s)", key, len(outcomes))
        return WorkflowResult(
            workflow="correction",
            issue_key=key,
            success=True,
            run_id=run_id,
            mode=request.mode,
            outcomes=outcomes,
            superseded_test_ids=superseded,
            missing_case_ids=missing,
            dry_run=self.dry_run,
        )

    def _correction_comment(
        self, mode: str, outcomes: List[LinkOutcome], superseded: List[str], missing: List[str], run_id: str
    ) -> str:
        listing = "\n".join(
            f"{index}. {o.title} (C{o.case_id}) - "
            f"{'Already linked' if o.action == ALREADY_LINKED else 'Linked'}"
            for index, o in enumerate(outcomes, start=1)
        )
        lines = [
            f"✅ Correction Applied ({mode} Mode)",
            "",
            "Thank you! The AI has learned from this correction.",
            "",
            "Correct Test Case(s):",
            listing,
        ]
        if superseded:
            lines.append(
                f"⚠️ Note: Bug was previously linked to {len(superseded)} other test(s). "
                f"Old results cannot be modified in {self.tm.system_name}."
            )
        if missing:
            lines.append(
                f"⚠️ Not found in {self.tm.run_label} {run_id}: " + ", ".join(f"C{cid}" for cid in missing)
            )
        lines += [
            "",
            f"Mode: {'Added to existing matches' if mode == MODE_ADD else 'Replaced all previous matches'}",
        ]
        if len(outcomes) > 1:
            lines.append(f"🎯 Multi-test correction: {len(outcomes)} test cases updated")
        lines += ["", "These patterns will be used for future similar bugs."]
        return "\n".join(lines)
