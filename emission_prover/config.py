import logging
import os
import resource
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from web3 import Web3

from emission_prover.errors import ConfigError

# Configuration
MODEL_FILENAME = "emission.onnx"
INPUT_FILENAME = "input.json"
CALIBRATION_FILENAME = "calibration.json"
SETTINGS_FILENAME = "settings.json"
COMPILED_FILENAME = "emission.ezkl"
PK_FILENAME = "pk.key"
VK_FILENAME = "vk.key"
SRS_FILENAME = "kzg.srs"
WITNESS_FILENAME = "witness.json"
PROOF_FILENAME = "proof.json"
VERIFIER_FILENAME = "Verifier.sol"

DEFAULT_PORT = 8080
DEFAULT_CHAIN_ID = 11155111
DEFAULT_RPC_URL = "https://sepolia.drpc.org"
DEFAULT_GATEWAY_URL = "http://127.0.0.1:9000"
DEFAULT_REFUND_ADDRESS = "0x788997cD5b9feAc56d4928539Dc21C637C61E69a"
DEFAULT_FEE_TOKEN_ADDRESS = "0xbd2F3813637Ed399D5ddBC2307D3bf4Ab1695B48"
DEFAULT_GAS_LIMIT = 500000
DEFAULT_ESTIMATED_EMISSION = 10000

BACKENDS = ("ezkl", "reference")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def setup_logging(level: Optional[str] = None):
    level = level or os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def log_resource_usage(stage_name):
    usage = resource.getrusage(resource.RUSAGE_SELF)
    max_rss_mb = usage.ru_maxrss / 1024
    if 'darwin' in sys.platform:
        max_rss_mb /= 1024
    logger.info(f"[{stage_name}] Max Memory: {max_rss_mb:.2f} MB")


def _checksum(value: str, name: str) -> str:
    # mixed-case input is normalized rather than checksum-validated
    if not isinstance(value, str) or not Web3.is_address(value.lower()):
        raise ConfigError(f"{name} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value.lower())


def parse_storage_queries(raw: str) -> Tuple[Tuple[str, int], ...]:
    """Parse ``address:slot,address:slot`` into checksummed query pairs.

    Slots may be decimal or 0x-prefixed hex.
    """
    queries = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        address, sep, slot = item.partition(":")
        if not sep:
            raise ConfigError(f"Storage query must be address:slot, got {item!r}")
        try:
            slot_index = int(slot, 0)
        except ValueError:
            raise ConfigError(f"Invalid storage slot in {item!r}") from None
        if slot_index < 0:
            raise ConfigError(f"Negative storage slot in {item!r}")
        queries.append((_checksum(address, "storage query address"), slot_index))
    return tuple(queries)


@dataclass(frozen=True)
class ServiceConfig:
    port: int = DEFAULT_PORT
    chain_id: int = DEFAULT_CHAIN_ID
    source_chain_id: Optional[int] = None
    dest_chain_id: Optional[int] = None
    rpc_url: str = DEFAULT_RPC_URL
    gateway_url: str = DEFAULT_GATEWAY_URL
    refund_address: str = DEFAULT_REFUND_ADDRESS
    fee_token_address: str = DEFAULT_FEE_TOKEN_ADDRESS
    gas_limit: int = DEFAULT_GAS_LIMIT
    estimated_emission: int = DEFAULT_ESTIMATED_EMISSION
    output_dir: Path = Path("./brevis-output")
    circuit_dir: Path = Path("./brevis-circuit")
    srs_dir: Path = Path("./brevis-srs")
    storage_queries: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    block_number: Optional[int] = None
    backend: str = "ezkl"
    finality_timeout: float = 600.0
    poll_interval: float = 5.0

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown proving backend {self.backend!r}, expected one of {BACKENDS}")
        if self.estimated_emission < 0 or self.estimated_emission >= 2 ** 248:
            raise ConfigError("estimated_emission must fit in an unsigned 248-bit integer")
        if self.gas_limit <= 0:
            raise ConfigError("gas_limit must be positive")
        if self.finality_timeout <= 0 or self.poll_interval <= 0:
            raise ConfigError("finality_timeout and poll_interval must be positive")
        object.__setattr__(self, "refund_address", _checksum(self.refund_address, "refund_address"))
        object.__setattr__(self, "fee_token_address", _checksum(self.fee_token_address, "fee_token_address"))
        for name in ("output_dir", "circuit_dir", "srs_dir"):
            object.__setattr__(self, name, Path(getattr(self, name)))

    @property
    def source_chain(self) -> int:
        return self.source_chain_id if self.source_chain_id is not None else self.chain_id

    @property
    def dest_chain(self) -> int:
        return self.dest_chain_id if self.dest_chain_id is not None else self.chain_id

    @classmethod
    def from_env(cls, environ=None) -> "ServiceConfig":
        env = os.environ if environ is None else environ

        def _int(name, default):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw, 0)
            except ValueError:
                raise ConfigError(f"{name} must be an integer, got {raw!r}") from None

        def _float(name, default):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError:
                raise ConfigError(f"{name} must be a number, got {raw!r}") from None

        chain_id = _int("CHAIN_ID", DEFAULT_CHAIN_ID)
        return cls(
            port=_int("PORT", DEFAULT_PORT),
            chain_id=chain_id,
            source_chain_id=_int("SOURCE_CHAIN_ID", None),
            dest_chain_id=_int("DEST_CHAIN_ID", None),
            rpc_url=env.get("RPC_URL") or DEFAULT_RPC_URL,
            gateway_url=env.get("GATEWAY_URL") or DEFAULT_GATEWAY_URL,
            refund_address=env.get("REFUND_ADDRESS") or DEFAULT_REFUND_ADDRESS,
            fee_token_address=env.get("FEE_TOKEN_ADDRESS") or DEFAULT_FEE_TOKEN_ADDRESS,
            gas_limit=_int("GAS_LIMIT", DEFAULT_GAS_LIMIT),
            estimated_emission=_int("ESTIMATED_EMISSION", DEFAULT_ESTIMATED_EMISSION),
            output_dir=Path(env.get("OUTPUT_DIR") or "./brevis-output"),
            circuit_dir=Path(env.get("CIRCUIT_DIR") or "./brevis-circuit"),
            srs_dir=Path(env.get("SRS_DIR") or "./brevis-srs"),
            storage_queries=parse_storage_queries(env.get("STORAGE_QUERIES", "")),
            block_number=_int("BLOCK_NUMBER", None),
            backend=env.get("PROVING_BACKEND") or "ezkl",
            finality_timeout=_float("FINALITY_TIMEOUT", 600.0),
            poll_interval=_float("POLL_INTERVAL", 5.0),
        )


@dataclass(frozen=True)
class ArtifactPaths:
    """Where the ezkl backend reads and writes its build artifacts."""

    circuit_dir: Path
    srs_dir: Path
    output_dir: Path

    @property
    def model(self) -> Path:
        return self.circuit_dir / MODEL_FILENAME

    @property
    def calibration(self) -> Path:
        return self.circuit_dir / CALIBRATION_FILENAME

    @property
    def settings(self) -> Path:
        return self.circuit_dir / SETTINGS_FILENAME

    @property
    def compiled(self) -> Path:
        return self.circuit_dir / COMPILED_FILENAME

    @property
    def pk(self) -> Path:
        return self.circuit_dir / PK_FILENAME

    @property
    def vk(self) -> Path:
        return self.circuit_dir / VK_FILENAME

    @property
    def srs(self) -> Path:
        return self.srs_dir / SRS_FILENAME

    @property
    def verifier(self) -> Path:
        return self.output_dir / VERIFIER_FILENAME

    def ensure(self):
        for directory in (self.circuit_dir, self.srs_dir, self.output_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "ArtifactPaths":
        return cls(circuit_dir=config.circuit_dir, srs_dir=config.srs_dir, output_dir=config.output_dir)
