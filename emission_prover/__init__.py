"""Emission prover: storage-slot emission circuit, preparation gate and proof submission pipeline."""

from emission_prover.circuit import Allocation, CircuitInput, EmissionCircuit, StorageSlot
from emission_prover.gate import PreparationGate, PreparationState
from emission_prover.pipeline import ProofPipeline, ProofReceipt

__all__ = [
    "Allocation",
    "CircuitInput",
    "EmissionCircuit",
    "StorageSlot",
    "PreparationGate",
    "PreparationState",
    "ProofPipeline",
    "ProofReceipt",
]
