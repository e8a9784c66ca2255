"""
ingestctl - provision and tear down customer tenants for the ingestion product.

A setup run walks a fixed sequence of steps against one customer domain:
operator preflight, company details, GCP project, integration secrets,
historical import options, domain-wide delegation, license check, Terraform
deployment, registry registration and end-to-end verification. Progress is
persisted per domain so an interrupted run can be resumed with ``--resume``.

Example usage:
    from ingestctl.state import StateStore
    from ingestctl.ledger import StepLedger

    store = StateStore()
    ledger = StepLedger(store, resume=True)
    if not ledger.is_complete("acme.com", "gcp_project"):
        ...
"""

__version__ = "0.1.0"
__all__ = [
    "StateStore",
    "StepLedger",
    "CommandRunner",
    "SetupWorkflow",
    "RetentionPolicy",
    "__version__",
]


# Lazy imports to keep CLI startup fast
def __getattr__(name: str):
    if name == "StateStore":
        from ingestctl.state import StateStore
        return StateStore
    if name == "StepLedger":
        from ingestctl.ledger import StepLedger
        return StepLedger
    if name == "CommandRunner":
        from ingestctl.runner import CommandRunner
        return CommandRunner
    if name == "SetupWorkflow":
        from ingestctl.workflow import SetupWorkflow
        return SetupWorkflow
    if name == "RetentionPolicy":
        from ingestctl.teardown import RetentionPolicy
        return RetentionPolicy
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
