"""
ezkl proving backend.

The emission circuit is exported as a small ONNX graph and run through the
usual ezkl flow:

1. Export ONNX model (values, mask) -> (total, deviation)
2. Settings & calibration
3. Compilation
4. SRS & keys
5. Witness, proof, local verification (per request, in a work directory
   under output_dir that is removed once the proof bytes are read)

``deviation`` is the sum of squared differences between each present slot
and the expected emission. It is published next to ``total`` and must be
zero for a valid proof, which is how the equality constraint reaches the
verifier. Witnesses with a non-zero deviation are never proven.
"""

import asyncio
import inspect
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

import ezkl
import numpy as np
import onnx
import torch
from torch import nn

from emission_prover.circuit import CircuitInput, EmissionCircuit
from emission_prover.config import (
    INPUT_FILENAME,
    PROOF_FILENAME,
    WITNESS_FILENAME,
    ArtifactPaths,
    log_resource_usage,
)
from emission_prover.errors import CircuitInputError, ProvingError, UnsatisfiableCircuitError
from emission_prover.prover import ChainContext, CircuitArtifacts, Proof, Witness, evaluate_circuit

logger = logging.getLogger(__name__)

# Inputs are fed to ezkl with scale 0; keep them exactly representable
# and keep squared deviations inside the field without lookups.
MAX_EZKL_VALUE = (1 << 31) - 1


class EmissionModule(nn.Module):
    def __init__(self, expected_emission: int):
        super().__init__()
        self.register_buffer("expected", torch.tensor(float(expected_emission)))

    def forward(self, values, mask):
        total = torch.sum(values * mask, dim=1, keepdim=True)
        diff = (values - self.expected) * mask
        deviation = torch.sum(diff * diff, dim=1, keepdim=True)
        return total, deviation


def _resolve(result):
    # Some ezkl releases return coroutines for the same call
    if inspect.isawaitable(result):
        return asyncio.run(result)
    return result


def export_circuit_to_onnx(circuit: EmissionCircuit, export_path: Path) -> Path:
    os.makedirs(export_path.parent, exist_ok=True)
    width = circuit.allocate().max_storage_slots
    module = EmissionModule(circuit.expected_emission)
    module.eval()
    dummy_values = torch.full((1, width), float(circuit.expected_emission))
    dummy_mask = torch.ones((1, width))

    torch.onnx.export(
        module,
        (dummy_values, dummy_mask),
        export_path.as_posix(),
        export_params=True,
        opset_version=12,
        do_constant_folding=True,
        input_names=['values', 'mask'],
        output_names=['total', 'deviation'],
        dynamo=False,
    )
    logger.info(f"Circuit exported to {export_path}")
    return export_path


def infer_input_shapes(onnx_path: Path) -> List[List[int]]:
    model = onnx.load(str(onnx_path))
    shapes = []
    for input_tensor in model.graph.input:
        shape = []
        for d in input_tensor.type.tensor_type.shape.dim:
            if d.dim_value > 0:
                shape.append(d.dim_value)
            else:
                shape.append(1)
        shapes.append(shape)
    return shapes


def encode_input(circuit: EmissionCircuit, circuit_input: CircuitInput) -> dict:
    """Pad slot values to the allocated width and build the ezkl input document."""
    width = circuit.allocate().max_storage_slots
    values = circuit_input.values()
    if len(values) > width:
        raise CircuitInputError(f"circuit accepts at most {width} storage slots, got {len(values)}")
    for v in values:
        if v > MAX_EZKL_VALUE:
            raise ProvingError(f"slot value {v} exceeds the ezkl backend range ({MAX_EZKL_VALUE})")

    padded = np.zeros(width, dtype=np.int64)
    mask = np.zeros(width, dtype=np.int64)
    padded[:len(values)] = values
    mask[:len(values)] = 1
    return dict(input_data=[padded.tolist(), mask.tolist()])


class EzklProver:
    def __init__(self, paths: ArtifactPaths):
        self.paths = paths
        self.compiled_for: Optional[EmissionCircuit] = None
        self.artifacts: Optional[CircuitArtifacts] = None

    def compile(self, circuit, output_dir, srs_dir, chain: ChainContext):
        paths = ArtifactPaths(circuit_dir=Path(output_dir), srs_dir=Path(srs_dir), output_dir=self.paths.output_dir)
        paths.ensure()
        logger.info(f"Compiling emission circuit for chain {chain.chain_id} "
                    f"(expected emission {circuit.expected_emission})")

        logger.info("--- Step 1: Export ONNX ---")
        export_circuit_to_onnx(circuit, paths.model)
        shapes = infer_input_shapes(paths.model)
        logger.info(f"Inferred Shapes: {shapes}")

        width = circuit.allocate().max_storage_slots
        calibration = dict(input_data=[
            np.full(width, circuit.expected_emission, dtype=np.int64).tolist(),
            np.ones(width, dtype=np.int64).tolist(),
        ])
        with open(paths.calibration, "w") as f:
            json.dump(calibration, f)

        logger.info("--- Step 2: Settings & Calibration ---")
        py_run_args = ezkl.PyRunArgs()
        py_run_args.input_visibility = "private"
        py_run_args.output_visibility = "public"
        py_run_args.param_visibility = "fixed"
        py_run_args.input_scale = 0
        py_run_args.param_scale = 0

        if not _resolve(ezkl.gen_settings(
            model=str(paths.model),
            output=str(paths.settings),
            py_run_args=py_run_args
        )):
            raise ProvingError("ezkl gen_settings failed")

        _resolve(ezkl.calibrate_settings(
            data=str(paths.calibration),
            model=str(paths.model),
            settings=str(paths.settings),
            target="resources",
        ))
        log_resource_usage("Settings")

        logger.info("--- Step 3: Compilation ---")
        if not _resolve(ezkl.compile_circuit(
            model=str(paths.model),
            compiled_circuit=str(paths.compiled),
            settings_path=str(paths.settings)
        )):
            raise ProvingError("ezkl compile_circuit failed")
        logger.info(f"Compiled to {paths.compiled}")
        log_resource_usage("Compile")

        logger.info("--- Step 4: SRS & Keys ---")
        if not _resolve(ezkl.get_srs(settings_path=str(paths.settings), logrows=None, srs_path=str(paths.srs))):
            raise ProvingError("Failed to get SRS")
        logger.info("SRS ready")

        if not _resolve(ezkl.setup(
            model=str(paths.compiled),
            vk_path=str(paths.vk),
            pk_path=str(paths.pk),
            srs_path=str(paths.srs)
        )):
            raise ProvingError("ezkl setup failed")
        logger.info("Keys generated")
        log_resource_usage("Setup")

        self.paths = paths
        self.compiled_for = circuit
        self.artifacts = CircuitArtifacts(
            circuit_dir=paths.circuit_dir,
            srs_dir=paths.srs_dir,
            files={
                "model": paths.model,
                "settings": paths.settings,
                "compiled": paths.compiled,
                "pk": paths.pk,
                "vk": paths.vk,
                "srs": paths.srs,
            },
        )
        return self.artifacts

    def _require_compiled(self, circuit: EmissionCircuit):
        if self.compiled_for is None:
            raise ProvingError("circuit has not been compiled")
        if circuit != self.compiled_for:
            raise ProvingError(
                f"circuit was compiled for expected emission {self.compiled_for.expected_emission}, "
                f"got {circuit.expected_emission}"
            )

    def build_witness(self, circuit, circuit_input):
        self._require_compiled(circuit)
        api = evaluate_circuit(circuit, circuit_input)

        self.paths.output_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="witness-", dir=self.paths.output_dir))
        input_path = work_dir / INPUT_FILENAME
        witness_path = work_dir / WITNESS_FILENAME

        try:
            with open(input_path, "w") as f:
                json.dump(encode_input(circuit, circuit_input), f)

            logger.info("Generating witness...")
            _resolve(ezkl.gen_witness(
                data=str(input_path),
                model=str(self.paths.compiled),
                output=str(witness_path),
                vk_path=str(self.paths.vk),
                srs_path=str(self.paths.srs)
            ))
            if not witness_path.exists():
                raise ProvingError("Witness generation failed")
            logger.info(f"Witness saved to {witness_path}")

            with open(witness_path, "r") as f:
                witness_data = json.load(f)

            rescaled = witness_data.get("pretty_elements", {}).get("rescaled_outputs")
            if rescaled:
                total, deviation = (float(out[0]) for out in rescaled[:2])
                if deviation != 0:
                    raise UnsatisfiableCircuitError([f"deviation == 0 (got {deviation})"])
                if int(round(total)) != api.public_values[0]:
                    raise ProvingError(f"ezkl total {total} disagrees with circuit output {api.public_values[0]}")
        except BaseException:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise

        return Witness(
            circuit=circuit,
            circuit_input=circuit_input,
            public_outputs=api.public_values,
            path=witness_path,
            data=witness_data,
        )

    def release(self, witness):
        """Remove the work directory holding a witness and its proof."""
        if witness.path is not None:
            shutil.rmtree(witness.path.parent, ignore_errors=True)

    def prove(self, witness):
        self._require_compiled(witness.circuit)
        if witness.path is None:
            raise ProvingError("witness was not generated by the ezkl backend")
        try:
            return self._prove(witness)
        finally:
            self.release(witness)

    def _prove(self, witness):
        proof_path = witness.path.parent / PROOF_FILENAME

        logger.info("Generating proof...")
        _resolve(ezkl.prove(
            witness=str(witness.path),
            model=str(self.paths.compiled),
            pk_path=str(self.paths.pk),
            proof_path=str(proof_path),
            srs_path=str(self.paths.srs)
        ))
        if not proof_path.exists():
            raise ProvingError("Proof generation failed (file not created)")
        logger.info(f"Proof saved to {proof_path}")
        log_resource_usage("Prove")

        if not self.verify(proof_path):
            raise ProvingError("Proof failed local verification")
        logger.info("Proof verified locally via EZKL")

        with open(proof_path, "r") as f:
            proof_data = json.load(f)
        hex_proof = proof_data["hex_proof"]
        if hex_proof.startswith("0x"):
            hex_proof = hex_proof[2:]
        return Proof(data=bytes.fromhex(hex_proof), public_outputs=list(witness.public_outputs))

    def verify(self, proof_path: Path) -> bool:
        return bool(_resolve(ezkl.verify(
            proof_path=str(proof_path),
            settings_path=str(self.paths.settings),
            vk_path=str(self.paths.vk),
            srs_path=str(self.paths.srs)
        )))

    def create_evm_verifier(self) -> Path:
        logger.info("--- Step 5: Verifier Contract ---")
        if not _resolve(ezkl.create_evm_verifier(
            vk_path=str(self.paths.vk),
            settings_path=str(self.paths.settings),
            sol_code_path=str(self.paths.verifier),
            srs_path=str(self.paths.srs)
        )):
            raise ProvingError("Verifier creation failed")
        logger.info(f"Verifier saved to {self.paths.verifier}")
        return self.paths.verifier
