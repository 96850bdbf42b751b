import threading
from concurrent.futures import wait

import pytest

from conftest import EXPECTED_EMISSION, FakeBackend
from emission_prover.circuit import EmissionCircuit
from emission_prover.gate import PreparationGate, PreparationState
from emission_prover.prover import ChainContext


def make_gate(backend, tmp_path):
    return PreparationGate(
        backend,
        lambda: EmissionCircuit(expected_emission=EXPECTED_EMISSION),
        circuit_dir=tmp_path / "circuit",
        srs_dir=tmp_path / "srs",
        chain=ChainContext(chain_id=11155111, rpc_url="https://sepolia.drpc.org"),
    )


@pytest.fixture
def gate_factory(tmp_path):
    gates = []

    def factory(backend):
        gate = make_gate(backend, tmp_path)
        gates.append(gate)
        return gate

    yield factory
    for gate in gates:
        gate.shutdown()


def test_starts_not_prepared(calls, gate_factory):
    gate = gate_factory(FakeBackend(calls))
    assert not gate.is_prepared()
    assert gate.status().state is PreparationState.NOT_PREPARED


def test_trigger_completes_and_is_idempotent(calls, gate_factory):
    backend = FakeBackend(calls)
    gate = gate_factory(backend)

    assert gate.trigger().result(timeout=5) is PreparationState.PREPARED
    assert gate.trigger().result(timeout=5) is PreparationState.PREPARED

    assert backend.compile_count == 1
    assert gate.is_prepared()
    assert gate.status().compile_attempts == 1


def test_compile_receives_circuit_and_directories(calls, gate_factory, tmp_path):
    gate = gate_factory(FakeBackend(calls))
    gate.prepare()

    name, circuit = calls[0]
    assert name == "compile"
    assert circuit.expected_emission == EXPECTED_EMISSION


def test_concurrent_triggers_compile_once(calls, gate_factory):
    backend = FakeBackend(calls, compile_delay=0.05)
    gate = gate_factory(backend)

    start = threading.Barrier(8)
    results = []

    def worker():
        start.wait()
        results.append(gate.prepare())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert backend.compile_count == 1
    assert results == [PreparationState.PREPARED] * 8


def test_concurrent_background_triggers_compile_once(calls, gate_factory):
    backend = FakeBackend(calls, compile_delay=0.05)
    gate = gate_factory(backend)

    futures = [gate.trigger() for _ in range(10)]
    done, not_done = wait(futures, timeout=10)

    assert not not_done
    assert backend.compile_count == 1
    assert all(f.result() is PreparationState.PREPARED for f in done)


def test_failed_compile_is_logged_and_retryable(calls, gate_factory, caplog):
    backend = FakeBackend(calls, compile_failures=1)
    gate = gate_factory(backend)

    assert gate.trigger().result(timeout=5) is PreparationState.NOT_PREPARED
    status = gate.status()
    assert status.state is PreparationState.NOT_PREPARED
    assert status.last_error == "srs download failed"
    assert "Error compiling circuit" in caplog.text

    assert gate.trigger().result(timeout=5) is PreparationState.PREPARED
    assert gate.status().last_error is None
    assert backend.compile_count == 2
