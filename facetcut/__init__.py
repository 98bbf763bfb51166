"""
facetcut: diamond facet reconciliation and deployment ledger

Keeps a diamond's selector dispatch table in line with the facets that should
serve it, and keeps a durable record of every module deployment.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ORCHESTRATION DRIVER                          │
    │    orchestration.py  deploy, bootstrap, cut in, record, run lock    │
    │                                                                      │
    │  RECONCILIATION                                                      │
    │    selectors.py      interface description -> selector catalog      │
    │    dispatch.py       read-only view of the dispatch table           │
    │    planner.py        minimal Add / Replace / Remove batches         │
    │    cut.py            one atomic submission per batch                │
    │                                                                      │
    │  RECORD KEEPING                                                      │
    │    ledger.py         address map, deployment history, diamond file  │
    │                                                                      │
    │  SUPPORT                                                             │
    │    config.py  observability.py  schema.py  errors.py  core.py       │
    │    diamond.py        in-memory target for tests and dry runs        │
    └─────────────────────────────────────────────────────────────────────┘

Principles
──────────

    Idempotent: planning against a table that is already current yields an
    empty batch, and an empty batch is never submitted.

    Atomic: a batch is all-or-nothing at the target. A revert leaves the
    dispatch table untouched and aborts the run.

    Append-only history: deployment records are never rewritten. An
    unreadable history file stops the run instead of being replaced.
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import facetcut modules on first access."""

    if name in ("InterfaceDescription", "Operation", "Parameter", "SelectorCatalog",
                "catalog", "selector_of", "canonical_signature", "subtract"):
        from facetcut import selectors
        return getattr(selectors, name)

    if name in ("DispatchTable", "DispatchTableReader"):
        from facetcut import dispatch
        return getattr(dispatch, name)

    if name in ("Facet", "CutAction", "FacetCutAction"):
        from facetcut import model
        return getattr(model, name)

    if name == "ReconciliationPlanner":
        from facetcut import planner
        return planner.ReconciliationPlanner

    if name in ("CutExecutor", "ExecutionChannel", "ExecutionResult", "CutIntent",
                "DeployIntent", "OperationHandle", "OperationReceipt"):
        from facetcut import cut
        return getattr(cut, name)

    if name in ("DeploymentLedger", "LedgerContext", "Environment", "DeploymentRecord",
                "FundRecord", "FacetEntry", "ModuleStatus", "resolve_version"):
        from facetcut import ledger
        return getattr(ledger, name)

    if name in ("Orchestrator", "ModuleArtifact", "RunLock", "load_artifact", "safe_verify"):
        from facetcut import orchestration
        return getattr(orchestration, name)

    if name == "InMemoryDiamond":
        from facetcut import diamond
        return diamond.InMemoryDiamond

    raise AttributeError(f"module 'facetcut' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Selectors
    "InterfaceDescription",
    "Operation",
    "Parameter",
    "SelectorCatalog",
    "catalog",
    "selector_of",
    "canonical_signature",
    "subtract",
    # Dispatch
    "DispatchTable",
    "DispatchTableReader",
    # Planning and cuts
    "Facet",
    "CutAction",
    "FacetCutAction",
    "ReconciliationPlanner",
    "CutExecutor",
    "ExecutionChannel",
    "ExecutionResult",
    "CutIntent",
    "DeployIntent",
    "OperationHandle",
    "OperationReceipt",
    # Ledger
    "DeploymentLedger",
    "LedgerContext",
    "Environment",
    "DeploymentRecord",
    "FundRecord",
    "FacetEntry",
    "ModuleStatus",
    "resolve_version",
    # Driver
    "Orchestrator",
    "ModuleArtifact",
    "RunLock",
    "load_artifact",
    "safe_verify",
    "InMemoryDiamond",
]
