"""Proving-backend contract and the in-process reference backend."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from emission_prover.circuit import CircuitAPI, CircuitInput, EmissionCircuit
from emission_prover.errors import ProvingError, UnsatisfiableCircuitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainContext:
    chain_id: int
    rpc_url: str


@dataclass
class CircuitArtifacts:
    circuit_dir: Path
    srs_dir: Path
    files: Dict[str, Path] = field(default_factory=dict)
    vk_digest: str = ""


@dataclass
class Witness:
    circuit: EmissionCircuit
    circuit_input: CircuitInput
    public_outputs: List[int]
    path: Optional[Path] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Proof:
    data: bytes
    public_outputs: List[int]
    path: Optional[Path] = None

    @property
    def hex(self) -> str:
        return "0x" + self.data.hex()


class ProvingBackend(Protocol):
    def compile(self, circuit: EmissionCircuit, output_dir: Path, srs_dir: Path,
                chain: ChainContext) -> CircuitArtifacts:
        ...

    def build_witness(self, circuit: EmissionCircuit, circuit_input: CircuitInput) -> Witness:
        ...

    def prove(self, witness: Witness) -> Proof:
        ...

    def release(self, witness: Witness):
        ...


def evaluate_circuit(circuit: EmissionCircuit, circuit_input: CircuitInput) -> CircuitAPI:
    """Run ``circuit.define`` over concrete input and reject unsatisfied constraints."""
    api = CircuitAPI()
    circuit.define(api, circuit_input)
    if not api.satisfied:
        raise UnsatisfiableCircuitError(api.failed)
    return api


def _digest(payload) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(encoded).hexdigest()


class ReferenceProver:
    """Evaluates the circuit directly in Python.

    Produces a sha256 commitment instead of a succinct proof, so it only
    suits development and tests. Constraint checking is identical to what
    a real backend must enforce.
    """

    def __init__(self):
        self.artifacts: Optional[CircuitArtifacts] = None

    def compile(self, circuit, output_dir, srs_dir, chain):
        allocation = circuit.allocate()
        vk_digest = _digest({
            "circuit": type(circuit).__name__,
            "expected_emission": circuit.expected_emission,
            "allocation": list(allocation),
            "chain_id": chain.chain_id,
        })
        self.artifacts = CircuitArtifacts(circuit_dir=Path(output_dir), srs_dir=Path(srs_dir), vk_digest=vk_digest)
        logger.info(f"Reference circuit compiled (vk {vk_digest[:16]}...)")
        return self.artifacts

    def build_witness(self, circuit, circuit_input):
        api = evaluate_circuit(circuit, circuit_input)
        return Witness(
            circuit=circuit,
            circuit_input=circuit_input,
            public_outputs=api.public_values,
            data={"values": circuit_input.values()},
        )

    def prove(self, witness):
        if self.artifacts is None:
            raise ProvingError("circuit has not been compiled")
        commitment = _digest({
            "vk": self.artifacts.vk_digest,
            "public_outputs": [str(v) for v in witness.public_outputs],
            "values": [str(v) for v in witness.data.get("values", [])],
        })
        return Proof(data=bytes.fromhex(commitment), public_outputs=list(witness.public_outputs))

    def release(self, witness):
        pass

    def verify(self, proof: Proof, witness: Witness) -> bool:
        try:
            expected = self.prove(witness)
        except ProvingError:
            return False
        return expected.data == proof.data and expected.public_outputs == proof.public_outputs
