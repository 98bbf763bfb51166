"""Orchestration driver.

Sequences a deployment run against one diamond:

    deploy base modules -> initialize -> cut in bootstrap facets
        -> deploy and cut in remaining facets -> record

Each step blocks on the execution channel before the next one reads state.
Fatal errors (revert, missing version tag, corrupt ledger) abort the run;
verification failures are logged and recorded as ``verified: false``.

At most one run may reconcile a given target at a time. ``RunLock`` enforces
that with an exclusive lock file.
"""

from __future__ import annotations

import json
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from facetcut.config import FacetCutConfig, get_config
from facetcut.core import (
    EMPTY_PAYLOAD,
    ZERO_ADDRESS,
    ledger_timestamp,
    load_json,
    timestamp_from_block,
)
from facetcut.cut import CutExecutor, DeployIntent, ExecutionChannel, ExecutionResult
from facetcut.dispatch import DispatchTable, DispatchTableReader
from facetcut.errors import ConcurrentRunError, ExecutionReverted, VerificationFailed
from facetcut.ledger import (
    DeploymentLedger,
    DeploymentRecord,
    FacetEntry,
    FundRecord,
    LedgerContext,
    ModuleState,
    ModuleStatus,
    resolve_version,
)
from facetcut.model import Facet
from facetcut.observability import FacetLayer, get_correlation_id, get_logger, timed_operation
from facetcut.planner import ReconciliationPlanner
from facetcut.selectors import InterfaceDescription, SelectorCatalog

logger = get_logger("driver", FacetLayer.DRIVER)


# =============================================================================
# ARTIFACTS
# =============================================================================

@dataclass(frozen=True)
class ModuleArtifact:
    """Compiled module: name, interface and the source carrying its version tag."""
    name: str
    interface: InterfaceDescription
    source_text: str
    source_name: str = ""

    def version(self, marker: str) -> str:
        return resolve_version(self.source_text, marker=marker, source=self.source_name or self.name)


def load_artifact(
    path: Union[str, pathlib.Path],
    sources_root: Union[str, pathlib.Path, None] = None,
) -> ModuleArtifact:
    """Load a compiler artifact (``contractName``, ``sourceName``, ``abi``).

    The source file is looked up as ``sources_root / sourceName``; without a
    sources root it is resolved against the current directory.
    """
    path = pathlib.Path(path)
    data = load_json(path)
    if not isinstance(data, dict) or "abi" not in data:
        raise ValueError(f"not a compiler artifact: {path}")

    name = str(data.get("contractName") or path.stem)
    source_name = str(data.get("sourceName") or "")
    if not source_name:
        raise ValueError(f"artifact {path} does not name its source file")
    source_path = pathlib.Path(sources_root or ".") / source_name
    return ModuleArtifact(
        name=name,
        interface=InterfaceDescription.from_abi(data["abi"]),
        source_text=source_path.read_text(encoding="utf-8"),
        source_name=source_name,
    )


# =============================================================================
# VERIFICATION
# =============================================================================

class VerificationService(Protocol):
    """Publishes module source to a block explorer."""

    def verify(self, module: str, address: str, constructor_args: Sequence[Any]) -> bool:
        ...


def safe_verify(
    service: Optional[VerificationService],
    module: str,
    address: str,
    constructor_args: Sequence[Any] = (),
    live: bool = False,
    enabled: bool = True,
) -> bool:
    """Best-effort verification; never raises.

    Skipped (False) off live networks or when disabled. An "already verified"
    error counts as success.
    """
    if service is None or not live or not enabled:
        return False

    logger.info("verifying module source", module=module, address=address)
    try:
        ok = bool(service.verify(module, address, list(constructor_args)))
    except Exception as e:
        if "already verified" in str(e).lower():
            return True
        failure = VerificationFailed(module, address, str(e))
        logger.warning(str(failure), error_code=failure.error_code)
        return False

    if not ok:
        failure = VerificationFailed(module, address, "service returned false")
        logger.warning(str(failure), error_code=failure.error_code)
    return ok


# =============================================================================
# RUN LOCK
# =============================================================================

class RunLock:
    """Exclusive lock file; a second holder gets ConcurrentRunError."""

    def __init__(self, path: Union[str, pathlib.Path]):
        self.path = pathlib.Path(path)
        self._held = False

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise ConcurrentRunError(f"another run holds {self.path}") from None
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps({"pid": os.getpid(), "since": ledger_timestamp()}))
        self._held = True

    def release(self) -> None:
        if self._held:
            self._held = False
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


# =============================================================================
# ORCHESTRATOR
# =============================================================================

@dataclass
class RunReport:
    """What a full run deployed and cut."""
    correlation_id: str
    deployed: Dict[str, str] = field(default_factory=dict)
    results: List[ExecutionResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "deployed": dict(self.deployed),
            "results": [r.to_dict() for r in self.results],
        }


class Orchestrator:
    """Drives deploy, cut and record steps against one target system."""

    def __init__(
        self,
        channel: ExecutionChannel,
        table: DispatchTable,
        ledger: DeploymentLedger,
        context: LedgerContext,
        config: Optional[FacetCutConfig] = None,
        verifier: Optional[VerificationService] = None,
    ):
        self.config = config or get_config()
        self.context = context
        self.ledger = ledger
        self.verifier = verifier
        self._channel = channel
        self.catalog = SelectorCatalog(self.config.cut.initializer_signature.get())
        self.reader = DispatchTableReader(table)
        self.planner = ReconciliationPlanner(self.reader)
        self.executor = CutExecutor(channel, self.config.confirmations(context.live))
        self.facets: Dict[str, Facet] = {}
        self.status: Dict[str, ModuleStatus] = {}

    @property
    def version_marker(self) -> str:
        return self.config.ledger.version_marker.get()

    def _status(self, name: str) -> ModuleStatus:
        return self.status.setdefault(name, ModuleStatus(name))

    def module_status(self, name: str) -> ModuleStatus:
        return self.status.get(name, ModuleStatus(name))

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def deploy(
        self,
        artifact: ModuleArtifact,
        constructor_args: Sequence[Any] = (),
        encoded_args: Optional[str] = None,
    ) -> Facet:
        """Deploy a module, verify it best-effort, and append it to the ledger.

        The version tag is resolved first so a module without one is never
        deployed.
        """
        version = artifact.version(self.version_marker)
        if encoded_args is None:
            encoded_args = EMPTY_PAYLOAD if not constructor_args else json.dumps(list(constructor_args), default=str)

        handle = self._channel.submit(DeployIntent(artifact.name, tuple(constructor_args), encoded_args))
        receipt = self._channel.wait(handle, self.executor.confirmations)
        if not receipt.success or not receipt.contract_address:
            raise ExecutionReverted(receipt.operation_id, f"deployment of {artifact.name} failed: {receipt.operation_id}")
        address = receipt.contract_address
        self._status(artifact.name).deployed(address)
        logger.info("module deployed", module=artifact.name, address=address, version=version)

        verified = safe_verify(
            self.verifier,
            artifact.name,
            address,
            constructor_args,
            live=self.context.live,
            enabled=self.config.verification.enabled.get() and bool(self.config.verification.api_key.get()),
        )
        record = DeploymentRecord(
            address=address,
            constructor_args=encoded_args,
            verified=verified,
            timestamp=timestamp_from_block(receipt.block_timestamp) if receipt.block_timestamp else ledger_timestamp(),
            optimizer_runs=self.config.ledger.optimizer_runs.get(),
        )
        self.ledger.record_deployment(self.context, artifact.name, version, record)
        self.ledger.record_address(self.context, artifact.name, address)
        self._status(artifact.name).mark_recorded()

        facet = Facet(
            name=artifact.name,
            address=address,
            selectors=self.catalog.catalog(artifact.interface),
            source_version=version,
        )
        self.facets[artifact.name] = facet
        return facet

    # ------------------------------------------------------------------
    # Cut
    # ------------------------------------------------------------------

    def _mark_cut_in(self, facets: Iterable[Facet]) -> None:
        for f in facets:
            if not f.selectors:
                continue
            status = self._status(f.name)
            if status.state == ModuleState.UNDEPLOYED:
                # deployed outside this run
                status.deployed(f.address)
                self.facets.setdefault(f.name, f)
            status.mark_cut_in()

    def plan_and_cut_in(
        self,
        facets: Sequence[Facet],
        init_target: str = ZERO_ADDRESS,
        init_payload: str = EMPTY_PAYLOAD,
    ) -> ExecutionResult:
        """Add or replace whatever ``facets`` need; no-op when already current."""
        actions = self.planner.plan(facets)
        result = self.executor.apply(actions, init_target, init_payload)
        self._mark_cut_in(facets)
        return result

    def plan_and_remove(self, selectors: Iterable[str]) -> ExecutionResult:
        removed = frozenset(selectors)
        if not removed:
            return ExecutionResult.noop()
        result = self.executor.apply([self.planner.plan_removal(removed)])
        for facet in self.facets.values():
            if facet.selectors and facet.selectors <= removed:
                self._status(facet.name).mark_cut_out()
        return result

    def add_facets(
        self,
        facets: Sequence[Facet],
        init_target: str = ZERO_ADDRESS,
        init_payload: str = EMPTY_PAYLOAD,
    ) -> ExecutionResult:
        """Add every selector of ``facets`` without consulting the loupe."""
        result = self.executor.apply(self.planner.plan_add(facets), init_target, init_payload)
        self._mark_cut_in(facets)
        return result

    def replace_facet(
        self,
        facet: Facet,
        init_target: str = ZERO_ADDRESS,
        init_payload: str = EMPTY_PAYLOAD,
    ) -> ExecutionResult:
        result = self.executor.apply(self.planner.plan_replace(facet), init_target, init_payload)
        self._mark_cut_in([facet])
        return result

    def bootstrap(
        self,
        loupe: Facet,
        others: Sequence[Facet] = (),
        init_target: str = ZERO_ADDRESS,
        init_payload: str = EMPTY_PAYLOAD,
    ) -> List[ExecutionResult]:
        """Cut in the loupe (and companions) on a fresh diamond.

        Before the loupe is reachable the planner cannot read the table, so
        the loupe is added unconditionally first; the remaining facets then
        go through normal planning.
        """
        results: List[ExecutionResult] = []
        if not self.reader.loupe_available():
            logger.info("loupe unavailable, adding it unconditionally", facet=loupe.name)
            results.append(self.add_facets([loupe], init_target, init_payload))
            init_target, init_payload = ZERO_ADDRESS, EMPTY_PAYLOAD
        results.append(self.plan_and_cut_in([loupe, *others], init_target, init_payload))
        return results

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def record(self, modules: Sequence[str], result: Optional[ExecutionResult] = None) -> None:
        """Write the address and version of ``modules`` to the diamond ledger."""
        entries: Dict[str, FacetEntry] = {}
        for name in modules:
            facet = self.facets.get(name)
            if facet is None:
                raise KeyError(f"{name} has not been deployed in this run")
            entries[name] = FacetEntry(facet.address, facet.source_version)
        self.ledger.record_facets(self.context, entries)
        logger.info(
            "facets recorded",
            modules=list(modules),
            operation_id=result.operation_id if result else None,
        )

    def record_fund(
        self,
        artifact: ModuleArtifact,
        tx_hash: str,
        sent_amount: int,
        balance_after: int,
    ) -> FundRecord:
        """Record the initial fund sent to the diamond; needs a recorded Diamond."""
        if not self.ledger.diamond(self.context).facets:
            raise ValueError(f"no Diamond recorded for {self.context.file_prefix}; cannot record a fund")
        fund = FundRecord(
            sent_amount=int(sent_amount),
            balance_after=int(balance_after),
            version=artifact.version(self.version_marker),
            tx_hash=tx_hash,
        )
        self.ledger.record_fund(self.context, artifact.name, fund)
        return fund

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def lock(self) -> RunLock:
        lock_dir = pathlib.Path(self.config.cut.lock_directory.get())
        return RunLock(lock_dir / f"{self.context.file_prefix}.lock")

    @timed_operation(logger, "deployment_run")
    def run(
        self,
        base: Sequence[ModuleArtifact],
        facets: Sequence[ModuleArtifact],
        loupe: str = "DiamondLoupeFacet",
        bootstrap: Sequence[str] = ("DiamondOwnershipFacet",),
        initializer: Optional[str] = None,
        init_payload: str = EMPTY_PAYLOAD,
        record_only: Sequence[str] = (),
    ) -> RunReport:
        """Deploy base modules, bootstrap the diamond, then cut in ``facets``.

        ``initializer`` names a base module whose address receives the
        one-time ``init_payload`` call with the first cut.
        """
        report = RunReport(correlation_id=get_correlation_id())
        with self.lock():
            for artifact in base:
                facet = self.deploy(artifact)
                report.deployed[facet.name] = facet.address

            init_target = self.facets[initializer].address if initializer else ZERO_ADDRESS
            report.results.extend(self.bootstrap(
                self.facets[loupe],
                [self.facets[name] for name in bootstrap],
                init_target,
                init_payload,
            ))
            self.record([*record_only, loupe, *bootstrap], report.results[-1])

            deployed = []
            for artifact in facets:
                facet = self.deploy(artifact)
                report.deployed[facet.name] = facet.address
                deployed.append(facet)

            result = self.plan_and_cut_in(deployed)
            report.results.append(result)
            self.record([f.name for f in deployed], result)

        logger.info("deployment run completed", deployed=sorted(report.deployed))
        return report
