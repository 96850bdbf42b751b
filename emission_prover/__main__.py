"""Command line entry point.

    emission-prover serve      run the HTTP service
    emission-prover prepare    compile the circuit in the foreground
    emission-prover verifier   export the EVM verifier contract (ezkl backend)
"""

import argparse
import logging
import sys
from dataclasses import replace

import uvicorn

from emission_prover.api import create_app
from emission_prover.config import ArtifactPaths, ServiceConfig, setup_logging
from emission_prover.errors import ConfigError, EmissionProverError
from emission_prover.gate import PreparationState
from emission_prover.service import EmissionService

logger = logging.getLogger(__name__)


def serve(config: ServiceConfig) -> int:
    if not config.storage_queries:
        raise ConfigError("STORAGE_QUERIES must name at least one address:slot pair")
    app = create_app(lambda: EmissionService.build(config))
    logger.info(f"Server running on port {config.port}")
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_config=None)
    return 0


def prepare(config: ServiceConfig) -> int:
    service = EmissionService.build(config)
    try:
        state = service.gate.prepare()
    finally:
        service.shutdown()
    if state is not PreparationState.PREPARED:
        logger.error(f"Preparation failed: {service.gate.status().last_error}")
        return 1
    return 0


def verifier(config: ServiceConfig) -> int:
    if config.backend != "ezkl":
        logger.error("Verifier export needs the ezkl backend")
        return 1
    from emission_prover.ezkl_backend import EzklProver

    path = EzklProver(ArtifactPaths.from_config(config)).create_evm_verifier()
    print(path)
    return 0


COMMANDS = {"serve": serve, "prepare": prepare, "verifier": verifier}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="emission-prover", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("--port", type=int, help="override PORT")
    parser.add_argument("--backend", choices=["ezkl", "reference"], help="override PROVING_BACKEND")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        config = ServiceConfig.from_env()
        overrides = {}
        if args.port is not None:
            overrides["port"] = args.port
        if args.backend is not None:
            overrides["backend"] = args.backend
        if overrides:
            config = replace(config, **overrides)
        return COMMANDS[args.command](config)
    except EmissionProverError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
