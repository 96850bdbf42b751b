import pytest

torch = pytest.importorskip("torch")
pytest.importorskip("ezkl")

from conftest import EXPECTED_EMISSION, make_input  # noqa: E402
from emission_prover.circuit import EmissionCircuit  # noqa: E402
from emission_prover.config import ArtifactPaths  # noqa: E402
from emission_prover.errors import CircuitInputError, ProvingError  # noqa: E402
from emission_prover.ezkl_backend import (  # noqa: E402
    MAX_EZKL_VALUE,
    EmissionModule,
    EzklProver,
    encode_input,
    export_circuit_to_onnx,
    infer_input_shapes,
)


def test_module_total_and_deviation():
    module = EmissionModule(EXPECTED_EMISSION)
    values = torch.tensor([[10000.0, 10000.0, 10000.0, 0.0]])
    mask = torch.tensor([[1.0, 1.0, 1.0, 0.0]])

    total, deviation = module(values, mask)

    assert total.item() == 30000
    assert deviation.item() == 0


def test_module_deviation_nonzero_on_mismatch():
    module = EmissionModule(EXPECTED_EMISSION)
    values = torch.tensor([[10000.0, 9999.0, 10000.0]])
    mask = torch.ones((1, 3))

    _, deviation = module(values, mask)

    assert deviation.item() == 1


def test_encode_input_pads_to_allocation(circuit):
    doc = encode_input(circuit, make_input([10000, 10000, 10000]))

    values, mask = doc["input_data"]
    assert len(values) == len(mask) == 32
    assert values[:4] == [10000, 10000, 10000, 0]
    assert sum(mask) == 3


def test_encode_input_limits(circuit):
    with pytest.raises(CircuitInputError):
        encode_input(circuit, make_input([10000] * 33))
    with pytest.raises(ProvingError):
        encode_input(circuit, make_input([MAX_EZKL_VALUE + 1]))


def test_export_onnx_shapes(circuit, tmp_path):
    pytest.importorskip("onnx")
    path = export_circuit_to_onnx(circuit, tmp_path / "emission.onnx")
    assert infer_input_shapes(path) == [[1, 32], [1, 32]]


def test_witness_requires_compiled_circuit(tmp_path):
    prover = EzklProver(ArtifactPaths(tmp_path / "c", tmp_path / "s", tmp_path / "o"))
    circuit = EmissionCircuit(expected_emission=EXPECTED_EMISSION)
    with pytest.raises(ProvingError, match="not been compiled"):
        prover.build_witness(circuit, make_input([EXPECTED_EMISSION]))


@pytest.fixture
def stubbed_prover(tmp_path, monkeypatch):
    import json

    from emission_prover import ezkl_backend

    def gen_witness(data, model, output, vk_path, srs_path):
        with open(output, "w") as f:
            json.dump({"pretty_elements": {"rescaled_outputs": [["30000"], ["0"]]}}, f)
        return True

    def prove(witness, model, pk_path, proof_path, srs_path):
        with open(proof_path, "w") as f:
            json.dump({"hex_proof": "0x0102"}, f)
        return True

    monkeypatch.setattr(ezkl_backend.ezkl, "gen_witness", gen_witness)
    monkeypatch.setattr(ezkl_backend.ezkl, "prove", prove)
    monkeypatch.setattr(ezkl_backend.ezkl, "verify", lambda **kwargs: True)

    prover = EzklProver(ArtifactPaths(tmp_path / "c", tmp_path / "s", tmp_path / "o"))
    prover.compiled_for = EmissionCircuit(expected_emission=EXPECTED_EMISSION)
    return prover


def test_work_directory_removed_after_proof(stubbed_prover):
    circuit = EmissionCircuit(expected_emission=EXPECTED_EMISSION)
    witness = stubbed_prover.build_witness(circuit, make_input([EXPECTED_EMISSION] * 3))
    assert witness.path.exists()

    proof = stubbed_prover.prove(witness)

    assert proof.data == b"\x01\x02"
    assert proof.public_outputs == [30000]
    assert list(stubbed_prover.paths.output_dir.iterdir()) == []


def test_work_directory_removed_when_witness_fails(stubbed_prover, monkeypatch):
    from emission_prover import ezkl_backend

    monkeypatch.setattr(ezkl_backend.ezkl, "gen_witness", lambda **kwargs: False)
    circuit = EmissionCircuit(expected_emission=EXPECTED_EMISSION)

    with pytest.raises(ProvingError, match="Witness generation failed"):
        stubbed_prover.build_witness(circuit, make_input([EXPECTED_EMISSION]))

    assert list(stubbed_prover.paths.output_dir.iterdir()) == []


def test_work_directory_removed_when_proof_fails(stubbed_prover, monkeypatch):
    from emission_prover import ezkl_backend

    circuit = EmissionCircuit(expected_emission=EXPECTED_EMISSION)
    witness = stubbed_prover.build_witness(circuit, make_input([EXPECTED_EMISSION] * 3))
    monkeypatch.setattr(ezkl_backend.ezkl, "prove", lambda **kwargs: False)

    with pytest.raises(ProvingError, match="Proof generation failed"):
        stubbed_prover.prove(witness)

    assert list(stubbed_prover.paths.output_dir.iterdir()) == []
