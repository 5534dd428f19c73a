"""
Activation orchestrator.

Runs the fixed pipeline on every rebuild:

    links -> tools -> secrets -> shells -> done

Every stage is idempotent and recomputed from the declared state; nothing is
persisted between runs. A fatal error halts the pipeline and the remaining
stages are reported as skipped. Non-fatal errors (shell integration) are
collected as warnings and the run still succeeds.
"""

from __future__ import annotations

import logging
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum

from envseal.activation.declared import ActivationPlan, load_declaration
from envseal.activation.links import apply_links
from envseal.activation.materializer import MaterializedSecret, Materializer
from envseal.activation.tools import Runner, ensure_tools
from envseal.errors import EnvsealError, IntegrationWriteError, PolicyError
from envseal.shell.integrator import ShellIntegrationArtifact, integrate
from envseal.vault.policy import RecipientPolicy

logger = logging.getLogger(__name__)


class Stage(StrEnum):
    LINKS = "links"
    TOOLS = "tools"
    SECRETS = "secrets"
    SHELLS = "shells"


class StageStatus(StrEnum):
    OK = "ok"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageOutcome:
    stage: Stage
    status: StageStatus
    detail: str = ""
    warnings: list[str] = field(default_factory=list)
    error: EnvsealError | None = None


@dataclass
class ActivationReport:
    host: str
    outcomes: list[StageOutcome] = field(default_factory=list)
    materialized: list[MaterializedSecret] = field(default_factory=list)
    artifacts: list[ShellIntegrationArtifact] = field(default_factory=list)

    @property
    def failed(self) -> StageOutcome | None:
        return next((o for o in self.outcomes if o.status == StageStatus.FAILED), None)

    @property
    def ok(self) -> bool:
        return self.failed is None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def warnings(self) -> list[str]:
        return [w for o in self.outcomes for w in o.warnings]

    def summary_lines(self) -> list[str]:
        lines = []
        for o in self.outcomes:
            lines.append(f"[{o.stage}] {o.status}" + (f": {o.detail}" if o.detail else ""))
            lines.extend(f"[{o.stage}]   warning: {w}" for w in o.warnings)
        failed = self.failed
        if failed is not None:
            lines.append(f"Activation FAILED at stage '{failed.stage}': {failed.error}")
        elif self.warnings:
            lines.append(f"Activation done with {len(self.warnings)} warning(s)")
        else:
            lines.append("Activation done")
        return lines


class Orchestrator:
    """Sequences the activation stages for one plan."""

    def __init__(self, plan: ActivationPlan, *, runner: Runner = subprocess.run):
        self.plan = plan
        self.runner = runner

    def run(self) -> ActivationReport:
        report = ActivationReport(host=self.plan.host)
        stages = [
            (Stage.LINKS, self._links),
            (Stage.TOOLS, self._tools),
            (Stage.SECRETS, lambda: self._secrets(report)),
            (Stage.SHELLS, lambda: self._shells(report)),
        ]
        logger.info("Activation starting for host %s", self.plan.host)

        halted = False
        for stage, step in stages:
            if halted:
                report.outcomes.append(
                    StageOutcome(stage, StageStatus.SKIPPED, "not run after earlier failure")
                )
                continue
            try:
                outcome = step()
            except EnvsealError as e:
                if not e.fatal:
                    logger.warning("Stage %s: %s", stage, e)
                    outcome = StageOutcome(stage, StageStatus.WARNING, str(e), warnings=[str(e)])
                else:
                    logger.error("Stage %s failed: %s", stage, e)
                    outcome = StageOutcome(stage, StageStatus.FAILED, type(e).__name__, error=e)
                    halted = True
            report.outcomes.append(outcome)

        if report.ok:
            logger.info("Activation done for host %s (%d warning(s))",
                        self.plan.host, len(report.warnings))
        return report

    # ── Stages ──────────────────────────────────────────────────────────

    def _links(self) -> StageOutcome:
        results = apply_links(self.plan.links)
        warnings = [r.warning for r in results if r.warning]
        return StageOutcome(
            Stage.LINKS,
            StageStatus.WARNING if warnings else StageStatus.OK,
            _count(r.action for r in results) or "no links declared",
            warnings,
        )

    def _tools(self) -> StageOutcome:
        results = ensure_tools(self.plan.tools, runner=self.runner)
        warnings = [r.hint for r in results if not r.ok]
        actions = ("installed" if r.installed else "present" if r.ok else "missing" for r in results)
        return StageOutcome(
            Stage.TOOLS,
            StageStatus.WARNING if warnings else StageStatus.OK,
            _count(actions) or "no tools declared",
            warnings,
        )

    def _secrets(self, report: ActivationReport) -> StageOutcome:
        if not self.plan.bindings:
            return StageOutcome(Stage.SECRETS, StageStatus.OK, "no secrets declared")

        warnings: list[str] = []
        policy = None
        if self.plan.policy_file.exists():
            try:
                policy = RecipientPolicy.load(self.plan.policy_file, self.plan.bundles_dir)
            except PolicyError as e:
                logger.warning("Recipient policy not applied: %s", e)
                warnings.append(f"recipient policy not applied: {e}")

        materializer = Materializer(self.plan.identity_file, self.plan.bundles_dir, policy)
        report.materialized = materializer.materialize_all(self.plan.bindings)
        warnings.extend(materializer.warnings)

        changed = sum(1 for m in report.materialized if m.changed)
        return StageOutcome(
            Stage.SECRETS,
            StageStatus.WARNING if warnings else StageStatus.OK,
            f"{len(report.materialized)} secret(s) materialized, {changed} changed",
            warnings,
        )

    def _shells(self, report: ActivationReport) -> StageOutcome:
        warnings: list[str] = []
        for dialect in self.plan.dialects():
            try:
                artifact = integrate(
                    dialect,
                    self.plan.bindings,
                    self.plan.hooks,
                    self.plan.cache_dir,
                    runner=self.runner,
                )
            except IntegrationWriteError as e:
                logger.warning("%s", e)
                warnings.append(str(e))
                continue
            report.artifacts.append(artifact)
            warnings.extend(artifact.warnings)

        kinds = ", ".join(a.shell_kind for a in report.artifacts) or "none"
        return StageOutcome(
            Stage.SHELLS,
            StageStatus.WARNING if warnings else StageStatus.OK,
            f"integrated: {kinds}",
            warnings,
        )


def _count(actions) -> str:
    counts = Counter(actions)
    return ", ".join(f"{n} {action}" for action, n in sorted(counts.items()))


def activate(plan: ActivationPlan | None = None, *, runner: Runner = subprocess.run) -> ActivationReport:
    """Load the host declaration (unless given) and run the full pipeline."""
    return Orchestrator(plan or load_declaration(), runner=runner).run()
