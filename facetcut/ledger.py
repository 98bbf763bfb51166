"""Deployment ledger.

Durable record of every module deployment, kept as JSON files under one ledger
directory. The ledger is an audit trail: planning never reads it.

Stores (one file each, production and staging never share a file):

    address map        <network>_addresses.json      / <network>_staging_addresses.json
                       { module: address }
    deployment ledger  deployment_details.json        / staging_deployment_details.json
                       { module: { network: { environment: { version: [record, ...] } } } }
    diamond ledger     <network>_diamond.json         / <network>_staging_diamond.json
                       { "Diamond": { "Facets": {...}, "InitialFund": {...} } }

Every write is read-modify-write followed by an atomic replace. The deployment
ledger is append-only and fails closed: an unreadable file raises
``LedgerCorrupt`` instead of being replaced with an empty one. The diamond
ledger holds fund records that cannot be rebuilt either, so it is strict too.
The address map is a snapshot; by default an unreadable one is treated as empty
(with a warning), or strictly when ``strict_address_map`` is set.

Calls take an explicit :class:`LedgerContext`; there is no ambient
"current network".
"""

from __future__ import annotations

import json
import pathlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from facetcut.core import (
    is_address,
    ledger_timestamp,
    load_json,
    write_json_atomic,
)
from facetcut.errors import LedgerCorrupt, VersionTagMissing
from facetcut.observability import FacetLayer, get_logger
from facetcut.schema import validate_against_schema

logger = get_logger("ledger", FacetLayer.LEDGER)

DEFAULT_VERSION_MARKER = "@custom:version"
DIAMOND_KEY = "Diamond"


# =============================================================================
# CONTEXT
# =============================================================================

class Environment(Enum):
    PRODUCTION = "production"
    STAGING = "staging"


@dataclass(frozen=True)
class LedgerContext:
    """Which network and environment a ledger call targets."""
    network: str
    environment: Environment = Environment.STAGING
    live: bool = False

    def __post_init__(self):
        if not self.network or any(c in self.network for c in "/\\"):
            raise ValueError(f"invalid network name: {self.network!r}")

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def file_prefix(self) -> str:
        """``sepolia`` or ``sepolia_staging``."""
        return self.network if self.is_production else f"{self.network}_staging"

    @classmethod
    def from_config(cls, config: Any, network: Optional[str] = None) -> "LedgerContext":
        """Build a context from a :class:`facetcut.config.FacetCutConfig`."""
        return cls(
            network=network or config.network.name.get(),
            environment=Environment.PRODUCTION if config.ledger.production.get() else Environment.STAGING,
            live=config.network.live.get(),
        )


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class DeploymentRecord:
    """One deployment of one module version."""
    address: str
    constructor_args: str = "0x"
    verified: bool = False
    timestamp: str = field(default_factory=ledger_timestamp)
    optimizer_runs: str = "600"

    def __post_init__(self):
        if not is_address(self.address):
            raise ValueError(f"deployment record needs an address, got {self.address!r}")

    def to_json(self) -> Dict[str, Any]:
        return {
            "ADDRESS": self.address,
            "OPTIMIZER_RUNS": self.optimizer_runs,
            "TIMESTAMP": self.timestamp,
            "CONSTRUCTOR_ARGS": self.constructor_args,
            "VERIFIED": self.verified,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        verified = data.get("VERIFIED", False)
        if isinstance(verified, str):
            verified = verified.strip().lower() == "true"
        return cls(
            address=data["ADDRESS"],
            constructor_args=str(data.get("CONSTRUCTOR_ARGS", "0x")),
            verified=bool(verified),
            timestamp=str(data.get("TIMESTAMP", "")),
            optimizer_runs=str(data.get("OPTIMIZER_RUNS", "")),
        )


@dataclass(frozen=True)
class FundRecord:
    """Most recent funding transfer to a module."""
    sent_amount: int
    balance_after: int
    version: str
    tx_hash: str

    def __post_init__(self):
        if self.sent_amount < 0 or self.balance_after < 0:
            raise ValueError("fund amounts must be non-negative")

    def to_json(self) -> Dict[str, str]:
        return {
            "SentAmount": str(self.sent_amount),
            "BalanceAfter": str(self.balance_after),
            "Version": self.version,
            "TxHash": self.tx_hash,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "FundRecord":
        return cls(
            sent_amount=int(data["SentAmount"]),
            balance_after=int(data["BalanceAfter"]),
            version=str(data["Version"]),
            tx_hash=str(data["TxHash"]),
        )


@dataclass(frozen=True)
class FacetEntry:
    """A facet as last recorded in the diamond ledger."""
    address: str
    version: str = ""

    def to_json(self) -> Dict[str, str]:
        return {"Address": self.address, "Version": self.version}


@dataclass
class DiamondLedger:
    facets: Dict[str, FacetEntry] = field(default_factory=dict)
    initial_fund: Dict[str, FundRecord] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {
            DIAMOND_KEY: {
                "Facets": {k: v.to_json() for k, v in self.facets.items()},
                "InitialFund": {k: v.to_json() for k, v in self.initial_fund.items()},
            }
        }


# =============================================================================
# MODULE LIFECYCLE
# =============================================================================

class ModuleState(Enum):
    UNDEPLOYED = "undeployed"
    DEPLOYED = "deployed"
    REDEPLOYED = "redeployed"


@dataclass
class ModuleStatus:
    """
    Where a module stands.

    ``recorded`` and ``cut_in`` are independent: a bootstrap facet can be
    recorded long before any dispatch table exists to cut it into.
    """
    name: str
    state: ModuleState = ModuleState.UNDEPLOYED
    address: Optional[str] = None
    recorded: bool = False
    cut_in: bool = False

    def deployed(self, address: str) -> None:
        self.state = ModuleState.DEPLOYED if self.state == ModuleState.UNDEPLOYED else ModuleState.REDEPLOYED
        self.address = address
        self.recorded = False
        self.cut_in = False

    def mark_recorded(self) -> None:
        if self.state == ModuleState.UNDEPLOYED:
            raise ValueError(f"{self.name} cannot be recorded before it is deployed")
        self.recorded = True

    def mark_cut_in(self) -> None:
        if self.state == ModuleState.UNDEPLOYED:
            raise ValueError(f"{self.name} cannot be cut in before it is deployed")
        self.cut_in = True

    def mark_cut_out(self) -> None:
        self.cut_in = False

    @property
    def label(self) -> str:
        if self.state == ModuleState.UNDEPLOYED:
            return "undeployed"
        parts = [self.state.value]
        if self.recorded:
            parts.append("recorded")
        parts.append("cut-in" if self.cut_in else "not-cut-in")
        return "/".join(parts)


# =============================================================================
# VERSION TAGS
# =============================================================================

def resolve_version(
    source_text: str,
    marker: str = DEFAULT_VERSION_MARKER,
    source: str = "<source>",
) -> str:
    """Version tag following ``marker`` on the same line of the source text."""
    head, sep, tail = str(source_text or "").partition(marker)
    if not sep:
        raise VersionTagMissing(source, marker)
    version = tail.splitlines()[0].strip() if tail else ""
    if not version:
        raise VersionTagMissing(source, marker)
    return version


def resolve_version_file(path: Union[str, pathlib.Path], marker: str = DEFAULT_VERSION_MARKER) -> str:
    p = pathlib.Path(path)
    return resolve_version(p.read_text(encoding="utf-8"), marker=marker, source=str(p))


# =============================================================================
# LEDGER
# =============================================================================

class DeploymentLedger:
    """Sole reader and writer of the ledger files under ``root``."""

    def __init__(
        self,
        root: Union[str, pathlib.Path],
        strict_address_map: bool = False,
    ):
        self.root = pathlib.Path(root)
        self.strict_address_map = strict_address_map

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def address_map_path(self, ctx: LedgerContext) -> pathlib.Path:
        return self.root / f"{ctx.file_prefix}_addresses.json"

    def deployment_ledger_path(self, ctx: LedgerContext) -> pathlib.Path:
        name = "deployment_details.json" if ctx.is_production else "staging_deployment_details.json"
        return self.root / name

    def diamond_path(self, ctx: LedgerContext) -> pathlib.Path:
        return self.root / f"{ctx.file_prefix}_diamond.json"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self, path: pathlib.Path, schema: str, strict: bool) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = load_json(path)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return self._unreadable(path, f"invalid JSON: {e}", strict)
        except OSError as e:
            return self._unreadable(path, f"cannot read: {e}", strict)
        if not isinstance(data, dict):
            return self._unreadable(path, "top-level value must be an object", strict)
        errors = validate_against_schema(data, schema)
        if errors:
            return self._unreadable(path, errors[0], strict)
        return data

    def _unreadable(self, path: pathlib.Path, reason: str, strict: bool) -> Dict[str, Any]:
        if strict:
            logger.error("ledger file unreadable", error_code=LedgerCorrupt.error_code, path=str(path), reason=reason)
            raise LedgerCorrupt(str(path), reason)
        logger.warning("ledger snapshot unreadable, starting empty", path=str(path), reason=reason)
        return {}

    # ------------------------------------------------------------------
    # Deployment ledger (append-only)
    # ------------------------------------------------------------------

    def record_deployment(
        self,
        ctx: LedgerContext,
        module: str,
        version: str,
        record: DeploymentRecord,
    ) -> int:
        """Append ``record`` to the module's history; returns the new length."""
        if not module:
            raise ValueError("module name is required")
        if not version:
            raise ValueError(f"refusing to record {module} without a version")

        path = self.deployment_ledger_path(ctx)
        data = self._load(path, "deployment-ledger", strict=True)
        history = (
            data.setdefault(module, {})
            .setdefault(ctx.network, {})
            .setdefault(ctx.environment.value, {})
            .setdefault(version, [])
        )
        history.append(record.to_json())
        write_json_atomic(path, data)

        logger.info(
            "deployment recorded",
            module=module,
            network=ctx.network,
            environment=ctx.environment.value,
            version=version,
            address=record.address,
            verified=record.verified,
            entries=len(history),
        )
        return len(history)

    def history(
        self,
        ctx: LedgerContext,
        module: str,
        version: Optional[str] = None,
    ) -> Dict[str, List[DeploymentRecord]]:
        """Version -> records for one module (restricted to ``version`` if given)."""
        data = self._load(self.deployment_ledger_path(ctx), "deployment-ledger", strict=True)
        versions = data.get(module, {}).get(ctx.network, {}).get(ctx.environment.value, {})
        out: Dict[str, List[DeploymentRecord]] = {}
        for v, records in versions.items():
            if version is not None and v != version:
                continue
            out[v] = [DeploymentRecord.from_json(r) for r in records]
        return out

    def modules(self, ctx: LedgerContext) -> List[str]:
        data = self._load(self.deployment_ledger_path(ctx), "deployment-ledger", strict=True)
        return sorted(
            name for name, networks in data.items()
            if ctx.environment.value in networks.get(ctx.network, {})
        )

    # ------------------------------------------------------------------
    # Address map (snapshot)
    # ------------------------------------------------------------------

    def record_address(self, ctx: LedgerContext, module: str, address: str) -> None:
        if not is_address(address):
            raise ValueError(f"not an address: {address!r}")
        path = self.address_map_path(ctx)
        data = self._load(path, "address-map", strict=self.strict_address_map)
        data[module] = address
        write_json_atomic(path, data, indent=3)
        logger.info("address recorded", module=module, address=address, network=ctx.network)

    def addresses(self, ctx: LedgerContext) -> Dict[str, str]:
        return dict(self._load(self.address_map_path(ctx), "address-map", strict=self.strict_address_map))

    # ------------------------------------------------------------------
    # Diamond ledger (facets + fund snapshot)
    # ------------------------------------------------------------------

    def diamond(self, ctx: LedgerContext) -> DiamondLedger:
        data = self._load(self.diamond_path(ctx), "diamond-ledger", strict=True)
        body = data.get(DIAMOND_KEY, {})
        return DiamondLedger(
            facets={k: FacetEntry(v["Address"], v["Version"]) for k, v in body.get("Facets", {}).items()},
            initial_fund={k: FundRecord.from_json(v) for k, v in body.get("InitialFund", {}).items()},
        )

    def _update_diamond(self, ctx: LedgerContext, mutate) -> None:
        path = self.diamond_path(ctx)
        data = self._load(path, "diamond-ledger", strict=True)
        body = data.setdefault(DIAMOND_KEY, {})
        body.setdefault("Facets", {})
        body.setdefault("InitialFund", {})
        mutate(body)
        write_json_atomic(path, data, indent=3)

    def record_facets(self, ctx: LedgerContext, entries: Dict[str, FacetEntry]) -> None:
        """Upsert the address and version of facets now serving the diamond."""
        if not entries:
            return

        def mutate(body: Dict[str, Any]) -> None:
            for name, entry in entries.items():
                body["Facets"][name] = entry.to_json()

        self._update_diamond(ctx, mutate)
        logger.info("diamond facets recorded", facets=sorted(entries), network=ctx.network)

    def record_fund(self, ctx: LedgerContext, module: str, fund: FundRecord) -> None:
        """Last-write-wins upsert of a module's funding snapshot."""

        def mutate(body: Dict[str, Any]) -> None:
            body["InitialFund"][module] = fund.to_json()

        self._update_diamond(ctx, mutate)
        logger.info(
            "fund recorded",
            module=module,
            sent_amount=str(fund.sent_amount),
            balance_after=str(fund.balance_after),
            tx_hash=fund.tx_hash,
        )
