"""
Setup steps, one callable per name in ``ingestctl.ledger.STEP_ORDER``.

Each step receives the ``WorkflowContext``, writes its outputs through
``ctx.set`` / ``ctx.update`` and returns nothing. Raising halts the run.
"""

from ingestctl.steps.company import run_company_info
from ingestctl.steps.credentials import run_credentials
from ingestctl.steps.delegation import run_domain_delegation
from ingestctl.steps.imports import run_historical_import
from ingestctl.steps.infrastructure import run_infrastructure_deploy
from ingestctl.steps.licensing import run_license_check
from ingestctl.steps.preflight import run_preflight
from ingestctl.steps.project import run_gcp_project
from ingestctl.steps.registration import run_registration
from ingestctl.steps.verification import run_verification

STEPS = {
    "preflight": run_preflight,
    "company_info": run_company_info,
    "gcp_project": run_gcp_project,
    "credentials": run_credentials,
    "historical_import": run_historical_import,
    "domain_delegation": run_domain_delegation,
    "license_check": run_license_check,
    "infrastructure_deploy": run_infrastructure_deploy,
    "registration": run_registration,
    "verification": run_verification,
}

__all__ = ["STEPS"]
