"""Chain-RPC collaborator: reads storage slots and builds circuit input."""

import logging
from typing import Optional, Sequence, Tuple

from eth_abi import decode
from web3 import HTTPProvider, Web3

from emission_prover.circuit import MAX_UINT248, CircuitInput, EmissionCircuit, StorageSlot
from emission_prover.deadline import Deadline
from emission_prover.errors import CircuitInputError

logger = logging.getLogger(__name__)


def decode_storage_word(raw: bytes) -> int:
    """Interpret a storage word as an unsigned integer."""
    raw = bytes(raw)
    if len(raw) > 32:
        raise CircuitInputError(f"storage word is {len(raw)} bytes, expected at most 32")
    (value,) = decode(['uint256'], raw.rjust(32, b"\x00"))
    return value


class ChainClient:
    def __init__(self, w3: Web3, chain_id: int, storage_queries: Sequence[Tuple[str, int]],
                 block_number: Optional[int] = None):
        self.w3 = w3
        self.chain_id = chain_id
        self.storage_queries = tuple(storage_queries)
        self.block_number = block_number

    @classmethod
    def from_rpc(cls, rpc_url: str, chain_id: int, storage_queries, block_number=None) -> "ChainClient":
        return cls(Web3(HTTPProvider(rpc_url)), chain_id, storage_queries, block_number)

    def build_input(self, circuit: EmissionCircuit, deadline: Optional[Deadline] = None) -> CircuitInput:
        deadline = deadline or Deadline.none()
        if not self.storage_queries:
            raise CircuitInputError("no storage queries configured")
        max_slots = circuit.allocate().max_storage_slots
        if len(self.storage_queries) > max_slots:
            raise CircuitInputError(
                f"{len(self.storage_queries)} storage queries configured, circuit allows {max_slots}"
            )

        remote_chain = self.w3.eth.chain_id
        if remote_chain != self.chain_id:
            raise CircuitInputError(f"RPC endpoint serves chain {remote_chain}, expected {self.chain_id}")

        block = self.block_number if self.block_number is not None else self.w3.eth.block_number
        slots = []
        for address, slot in self.storage_queries:
            deadline.check()
            raw = self.w3.eth.get_storage_at(address, slot, block_identifier=block)
            value = decode_storage_word(raw)
            if value > MAX_UINT248:
                raise CircuitInputError(f"storage {address}[{slot}] at block {block} does not fit in uint248")
            slots.append(StorageSlot(block_num=block, address=address, slot=slot, value=value))

        logger.info(f"Read {len(slots)} storage slots at block {block}")
        return CircuitInput(storage_slots=tuple(slots), block_num=block)
