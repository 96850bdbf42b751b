# emission_prover/api.py
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from emission_prover.errors import EmissionProverError, NotReadyError
from emission_prover.service import EmissionService

logger = logging.getLogger(__name__)


class SubmitProofResponse(BaseModel):
    request_id: str
    fee: int
    transaction: str


class StatusResponse(BaseModel):
    state: str
    compile_attempts: int
    last_error: Optional[str] = None


def create_app(service_factory: Callable[[], EmissionService]) -> FastAPI:
    app = FastAPI(
        title="Emission Prover",
        description="Prepares the emission circuit and submits emission proofs.",
        version="0.1.0",
    )

    @app.on_event("startup")
    def on_startup():
        """Build the service (config, collaborators, gate) when the application starts."""
        app.state.service = service_factory()

    @app.on_event("shutdown")
    def on_shutdown():
        service = getattr(app.state, "service", None)
        if service is not None:
            service.shutdown()

    def get_service(request: Request) -> EmissionService:
        return request.app.state.service

    @app.api_route("/prepare-download", methods=["GET", "POST"], response_class=PlainTextResponse)
    def prepare_download(request: Request):
        """Start circuit preparation in the background; always acknowledges."""
        get_service(request).gate.trigger()
        return PlainTextResponse("Circuit preparation started.", status_code=200)

    @app.api_route("/submit-proof", methods=["GET", "POST"], response_model=SubmitProofResponse)
    def submit_proof(request: Request):
        """Run the full submission pipeline and return the finalized request."""
        try:
            receipt = get_service(request).pipeline.submit()
        except NotReadyError as e:
            return PlainTextResponse(str(e), status_code=400)
        except EmissionProverError as e:
            return PlainTextResponse(str(e), status_code=500)
        return JSONResponse(receipt.to_dict())

    @app.get("/status", response_model=StatusResponse)
    def status(request: Request):
        current = get_service(request).gate.status()
        return StatusResponse(
            state=current.state.value,
            compile_attempts=current.compile_attempts,
            last_error=current.last_error,
        )

    return app
