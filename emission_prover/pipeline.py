"""
Proof submission pipeline.

Stages run strictly in order and the first failure aborts the run:

1. build circuit input from chain state
2. generate witness
3. generate proof
4. submit proof to the proof network
5. prepare the cross-chain request (request id, fee, initial tx)
6. wait for the request to finalize

Nothing is retried or rolled back. Once stage 4 has run the proof network
already holds the proof, so a later failure leaves that side effect in
place and is still reported as a failure.

Concurrent submissions share nothing but the (read-only) gate check; each
rebuilds its own input and witness.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from hexbytes import HexBytes

from emission_prover.circuit import EmissionCircuit
from emission_prover.deadline import Deadline
from emission_prover.errors import NotReadyError, StageError
from emission_prover.gate import PreparationGate
from emission_prover.gateway import to_hex

logger = logging.getLogger(__name__)


class Stage(Enum):
    BUILD_INPUT = (1, "building circuit input")
    WITNESS = (2, "generating witness")
    PROOF = (3, "generating proof")
    SUBMIT = (4, "submitting proof")
    PREPARE_REQUEST = (5, "preparing request")
    FINALITY = (6, "waiting for proof submission")

    @property
    def step(self) -> int:
        return self.value[0]

    @property
    def description(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class SubmissionSettings:
    source_chain_id: int
    dest_chain_id: int
    refund_address: str
    fee_token_address: str
    gas_limit: int
    timeout: Optional[float] = None

    @classmethod
    def from_config(cls, config) -> "SubmissionSettings":
        return cls(
            source_chain_id=config.source_chain,
            dest_chain_id=config.dest_chain,
            refund_address=config.refund_address,
            fee_token_address=config.fee_token_address,
            gas_limit=config.gas_limit,
            timeout=config.finality_timeout,
        )


@dataclass(frozen=True)
class ProofReceipt:
    request_id: HexBytes
    fee: int
    transaction: HexBytes

    def to_dict(self) -> dict:
        return {
            "request_id": to_hex(self.request_id),
            "fee": self.fee,
            "transaction": to_hex(self.transaction),
        }


class ProofPipeline:
    def __init__(self, gate: PreparationGate, make_circuit: Callable[[], EmissionCircuit],
                 chain, backend, gateway, settings: SubmissionSettings):
        self.gate = gate
        self.make_circuit = make_circuit
        self.chain = chain
        self.backend = backend
        self.gateway = gateway
        self.settings = settings

    def submit(self, deadline: Optional[Deadline] = None) -> ProofReceipt:
        if not self.gate.is_prepared():
            raise NotReadyError()

        deadline = deadline or Deadline(self.settings.timeout)
        circuit = self.make_circuit()

        circuit_input = self._run(Stage.BUILD_INPUT, deadline, self.chain.build_input, circuit, deadline)
        witness = self._run(Stage.WITNESS, deadline, self.backend.build_witness, circuit, circuit_input)
        try:
            return self._finish(witness, deadline)
        finally:
            self.backend.release(witness)

    def _finish(self, witness, deadline: Deadline) -> ProofReceipt:
        proof = self._run(Stage.PROOF, deadline, self.backend.prove, witness)
        self._run(Stage.SUBMIT, deadline, self.gateway.submit_proof, proof)
        prepared = self._run(
            Stage.PREPARE_REQUEST, deadline, self.gateway.prepare_request,
            witness,
            self.settings.source_chain_id,
            self.settings.dest_chain_id,
            self.settings.refund_address,
            self.settings.fee_token_address,
            self.settings.gas_limit,
        )
        tx_hash = self._run(Stage.FINALITY, deadline, self.gateway.wait_finality, prepared.request_id, deadline)

        receipt = ProofReceipt(request_id=prepared.request_id, fee=prepared.fee, transaction=tx_hash)
        logger.info(f"Submission complete: request {to_hex(receipt.request_id)}, tx {to_hex(receipt.transaction)}")
        return receipt

    def _run(self, stage: Stage, deadline: Deadline, fn, *args):
        logger.info(f"--- Step {stage.step}: {stage.description.capitalize()} ---")
        try:
            deadline.check()
            return fn(*args)
        except Exception as e:
            logger.error(f"Error {stage.description}: {e}")
            raise StageError(stage.name.lower(), stage.description, e) from e
