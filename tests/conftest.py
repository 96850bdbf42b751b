import threading
import time

import pytest
from hexbytes import HexBytes

from emission_prover.circuit import CircuitInput, EmissionCircuit, StorageSlot
from emission_prover.config import ServiceConfig
from emission_prover.gateway import PreparedRequest
from emission_prover.prover import ReferenceProver

EXPECTED_EMISSION = 10000
TOKEN = "0x1111111111111111111111111111111111111111"


def make_input(values, block=100):
    return CircuitInput(
        storage_slots=tuple(
            StorageSlot(block_num=block, address=TOKEN, slot=i, value=v) for i, v in enumerate(values)
        ),
        block_num=block,
    )


class CallLog(list):
    def names(self):
        return [name for name, _ in self]


class FakeBackend(ReferenceProver):
    def __init__(self, calls, compile_delay=0.0, compile_failures=0):
        super().__init__()
        self.calls = calls
        self.compile_delay = compile_delay
        self.compile_failures = compile_failures
        self.compile_count = 0
        self._count_lock = threading.Lock()

    def compile(self, circuit, output_dir, srs_dir, chain):
        with self._count_lock:
            self.compile_count += 1
        self.calls.append(("compile", circuit))
        if self.compile_delay:
            time.sleep(self.compile_delay)
        if self.compile_failures:
            self.compile_failures -= 1
            raise RuntimeError("srs download failed")
        return super().compile(circuit, output_dir, srs_dir, chain)

    def build_witness(self, circuit, circuit_input):
        self.calls.append(("build_witness", circuit_input))
        return super().build_witness(circuit, circuit_input)

    def prove(self, witness):
        self.calls.append(("prove", witness))
        return super().prove(witness)

    def release(self, witness):
        self.calls.append(("release", witness))


class FakeChain:
    def __init__(self, calls, values=(EXPECTED_EMISSION,) * 3, error=None):
        self.calls = calls
        self.values = values
        self.error = error

    def build_input(self, circuit, deadline=None):
        self.calls.append(("build_input", circuit))
        if self.error is not None:
            raise self.error
        return make_input(self.values)


class FakeGateway:
    def __init__(self, calls, finality_error=None):
        self.calls = calls
        self.finality_error = finality_error
        self.request_id = HexBytes("0x" + "ab" * 32)
        self.final_tx = HexBytes("0x" + "cd" * 32)

    def submit_proof(self, proof):
        self.calls.append(("submit_proof", proof))

    def prepare_request(self, witness, src_chain_id, dst_chain_id, refund_address, fee_token_address, gas_limit):
        self.calls.append(("prepare_request", (src_chain_id, dst_chain_id, refund_address, fee_token_address, gas_limit)))
        return PreparedRequest(request_id=self.request_id, fee=1234, tx_hash=HexBytes("0x" + "ef" * 32))

    def wait_finality(self, request_id, deadline=None):
        self.calls.append(("wait_finality", request_id))
        if self.finality_error is not None:
            raise self.finality_error
        return self.final_tx


@pytest.fixture
def calls():
    return CallLog()


@pytest.fixture
def circuit():
    return EmissionCircuit(expected_emission=EXPECTED_EMISSION)


@pytest.fixture
def config(tmp_path):
    return ServiceConfig(
        backend="reference",
        output_dir=tmp_path / "output",
        circuit_dir=tmp_path / "circuit",
        srs_dir=tmp_path / "srs",
        estimated_emission=EXPECTED_EMISSION,
        finality_timeout=30.0,
        poll_interval=0.01,
    )
