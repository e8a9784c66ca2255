"""
Step ledger: which setup steps have completed for a domain.

The ledger shares the per-domain record of ``StateStore`` (its ``steps``
section). A completed step is only skipped in resume mode; without resume
every step runs again and re-records its completion. Steps named in
``force`` always run, even when resuming.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ingestctl.state import StateStore, StepRecord, StepStatus

# Fixed execution order. The engine never infers dependencies between steps.
STEP_ORDER: Tuple[str, ...] = (
    "preflight",
    "company_info",
    "gcp_project",
    "credentials",
    "historical_import",
    "domain_delegation",
    "license_check",
    "infrastructure_deploy",
    "registration",
    "verification",
)

STEP_TITLES = {
    "preflight": "Preflight checks",
    "company_info": "Company information",
    "gcp_project": "GCP project",
    "credentials": "Integration credentials",
    "historical_import": "Historical import options",
    "domain_delegation": "Domain-wide delegation",
    "license_check": "License check",
    "infrastructure_deploy": "Infrastructure deployment",
    "registration": "Registration",
    "verification": "Verification",
}


class StepLedger:
    """
    Completion flags for workflow steps, scoped per domain.

    Args:
        store: State store owning the per-domain record
        resume: Whether completed steps may be skipped
        force: Steps that run even when already complete
    """

    def __init__(self, store: StateStore, resume: bool = False, force: Iterable[str] = ()):
        self.store = store
        self.resume = resume
        self.force = set(force)
        unknown = self.force - set(STEP_ORDER)
        if unknown:
            raise ValueError(f"Unknown step(s): {', '.join(sorted(unknown))}")

    def is_complete(self, domain: str, step: str) -> bool:
        """
        Check if a step should be skipped.

        True only when resume mode is enabled, the step is not forced and
        its last recorded outcome is completed.
        """
        if not self.resume or step in self.force:
            return False
        record = self.store.load(domain).steps.get(step)
        return record is not None and record.status == StepStatus.COMPLETED

    def mark_complete(self, domain: str, step: str) -> None:
        record = self.store.load(domain)
        record.steps[step] = StepRecord(step_id=step, status=StepStatus.COMPLETED)
        self.store.save(record)

    def mark_failed(self, domain: str, step: str, error: str) -> None:
        record = self.store.load(domain)
        record.steps[step] = StepRecord(step_id=step, status=StepStatus.FAILED, error=error)
        self.store.save(record)

    def clear(self, domain: str) -> None:
        """Remove all step records, keeping the stored values."""
        if not self.store.exists(domain):
            return
        record = self.store.load(domain)
        record.steps.clear()
        self.store.save(record)

    def completed_steps(self, domain: str) -> List[str]:
        """Completed steps in workflow order."""
        steps = self.store.load(domain).steps
        return [
            s for s in STEP_ORDER
            if s in steps and steps[s].status == StepStatus.COMPLETED
        ]

    def next_step(self, domain: str) -> Optional[str]:
        """First step in workflow order that has not completed."""
        done = set(self.completed_steps(domain))
        for step in STEP_ORDER:
            if step not in done:
                return step
        return None
