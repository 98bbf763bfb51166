import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import facetcut`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from facetcut.config import ConfigManager  # noqa: E402
from facetcut.diamond import InMemoryDiamond  # noqa: E402
from facetcut.ledger import DeploymentLedger, LedgerContext  # noqa: E402
from facetcut.model import Facet  # noqa: E402
from facetcut.selectors import InterfaceDescription, catalog  # noqa: E402


LOUPE_SIGNATURES = [
    "facets()",
    "facetFunctionSelectors(address)",
    "facetAddresses()",
    "facetAddress(bytes4)",
    "supportsInterface(bytes4)",
]
OWNERSHIP_SIGNATURES = ["owner()", "transferOwnership(address)"]
TOKEN_SIGNATURES = ["transfer(address,uint256)", "balanceOf(address)"]

_ENV_VARS = (
    "FACETCUT_NETWORK",
    "FACETCUT_NETWORK_LIVE",
    "FACETCUT_CONFIRMATIONS",
    "FACETCUT_CONFIRMATIONS_LOCAL",
    "FACETCUT_LEDGER_DIR",
    "FACETCUT_STRICT_ADDRESS_MAP",
    "FACETCUT_OPTIMIZER_RUNS",
    "FACETCUT_VERSION_MARKER",
    "FACETCUT_INITIALIZER",
    "FACETCUT_LOCK_DIR",
    "FACETCUT_VERIFY",
    "FACETCUT_LOG_LEVEL",
    "FACETCUT_LOG_FORMAT",
    "PRODUCTION",
    "ETHERSCAN_API_KEY",
)


def addr(n: int) -> str:
    """Deterministic non-zero test address."""
    return "0x" + f"{n:040x}"


def make_facet(name: str, signatures, address: str, version: str = "1.0.0") -> Facet:
    return Facet(
        name=name,
        address=address,
        selectors=catalog(InterfaceDescription.from_signatures(signatures)),
        source_version=version,
    )


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Every test starts from default configuration and a clean environment."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def diamond() -> InMemoryDiamond:
    return InMemoryDiamond()


@pytest.fixture
def ledger(tmp_path) -> DeploymentLedger:
    return DeploymentLedger(tmp_path / "_deployment_logs")


@pytest.fixture
def ctx() -> LedgerContext:
    return LedgerContext("sepolia")


@pytest.fixture
def loupe_facet() -> Facet:
    return make_facet("DiamondLoupeFacet", LOUPE_SIGNATURES, addr(0x10))


@pytest.fixture
def ownership_facet() -> Facet:
    return make_facet("DiamondOwnershipFacet", OWNERSHIP_SIGNATURES, addr(0x20))


@pytest.fixture
def token_facet() -> Facet:
    return make_facet("TokenFacet", TOKEN_SIGNATURES, addr(0x30))
