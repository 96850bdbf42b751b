import logging
from dataclasses import dataclass

from emission_prover.chain import ChainClient
from emission_prover.circuit import EmissionCircuit
from emission_prover.config import ArtifactPaths, ServiceConfig
from emission_prover.gate import PreparationGate
from emission_prover.gateway import GatewayClient
from emission_prover.pipeline import ProofPipeline, SubmissionSettings
from emission_prover.prover import ChainContext, ReferenceProver

logger = logging.getLogger(__name__)


def make_backend(config: ServiceConfig):
    if config.backend == "reference":
        return ReferenceProver()
    # ezkl pulls in torch and onnx; only import it when selected
    from emission_prover.ezkl_backend import EzklProver
    return EzklProver(ArtifactPaths.from_config(config))


@dataclass
class EmissionService:
    config: ServiceConfig
    gate: PreparationGate
    pipeline: ProofPipeline

    def shutdown(self):
        logger.info("Shutting down preparation executor")
        self.gate.shutdown(wait=False)

    @classmethod
    def build(cls, config: ServiceConfig, backend=None, chain=None, gateway=None) -> "EmissionService":
        backend = backend if backend is not None else make_backend(config)
        chain = chain if chain is not None else ChainClient.from_rpc(
            config.rpc_url, config.chain_id, config.storage_queries, config.block_number
        )
        gateway = gateway if gateway is not None else GatewayClient(
            config.gateway_url, poll_interval=config.poll_interval
        )

        def make_circuit():
            return EmissionCircuit(expected_emission=config.estimated_emission)

        gate = PreparationGate(
            backend,
            make_circuit,
            circuit_dir=config.circuit_dir,
            srs_dir=config.srs_dir,
            chain=ChainContext(chain_id=config.chain_id, rpc_url=config.rpc_url),
        )
        pipeline = ProofPipeline(
            gate, make_circuit, chain, backend, gateway, SubmissionSettings.from_config(config)
        )
        logger.info(f"Service ready for chain {config.chain_id} using the {config.backend} backend")
        return cls(config=config, gate=gate, pipeline=pipeline)
