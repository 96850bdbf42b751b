"""Proof-network collaborator.

Talks JSON over HTTP to the proof gateway:

    POST /v1/proofs                  register a proof
    POST /v1/requests                open a cross-chain request, returns id, fee, tx
    GET  /v1/requests/<request_id>   poll request status until finalized
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from hexbytes import HexBytes

from emission_prover.deadline import Deadline
from emission_prover.errors import GatewayError
from emission_prover.prover import Proof, Witness

logger = logging.getLogger(__name__)

FINAL_STATUSES = ("finalized",)
FAILED_STATUSES = ("failed", "expired", "rejected")


@dataclass(frozen=True)
class PreparedRequest:
    request_id: HexBytes
    fee: int
    tx_hash: HexBytes


def to_hex(value) -> str:
    return "0x" + bytes(value).hex()


def _hex(value, field_name) -> HexBytes:
    try:
        parsed = HexBytes(value)
    except (TypeError, ValueError):
        raise GatewayError(f"gateway returned malformed {field_name}: {value!r}") from None
    if not parsed:
        raise GatewayError(f"gateway returned empty {field_name}")
    return parsed


class GatewayClient:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: float = 30.0, poll_interval: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_interval = poll_interval

    def _call(self, method, path, payload=None):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            raise GatewayError(f"{method} {path} returned {response.status_code}: {response.text.strip()}")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise GatewayError(f"{method} {path} returned invalid JSON") from None

    def submit_proof(self, proof: Proof):
        self._call("POST", "/v1/proofs", {
            "proof": proof.hex,
            "public_outputs": [str(v) for v in proof.public_outputs],
        })
        logger.info("Proof submitted to gateway")

    def prepare_request(self, witness: Witness, src_chain_id: int, dst_chain_id: int,
                        refund_address: str, fee_token_address: str, gas_limit: int) -> PreparedRequest:
        body = self._call("POST", "/v1/requests", {
            "src_chain_id": src_chain_id,
            "dst_chain_id": dst_chain_id,
            "refund_address": refund_address,
            "fee_token_address": fee_token_address,
            "gas_limit": gas_limit,
            "block_num": witness.circuit_input.block_num,
            "public_outputs": [str(v) for v in witness.public_outputs],
        })
        for key in ("request_id", "fee", "tx_hash"):
            if key not in body:
                raise GatewayError(f"gateway response is missing {key!r}")
        raw_fee = body["fee"]
        try:
            if isinstance(raw_fee, bool) or (isinstance(raw_fee, float) and not raw_fee.is_integer()):
                raise ValueError(raw_fee)
            fee = int(raw_fee)
        except (TypeError, ValueError):
            raise GatewayError(f"gateway returned malformed fee: {raw_fee!r}") from None
        if fee < 0:
            raise GatewayError(f"gateway returned negative fee: {fee}")

        prepared = PreparedRequest(
            request_id=_hex(body["request_id"], "request_id"),
            fee=fee,
            tx_hash=_hex(body["tx_hash"], "tx_hash"),
        )
        logger.info(f"Request {to_hex(prepared.request_id)} prepared, fee {fee}")
        return prepared

    def wait_finality(self, request_id: HexBytes, deadline: Optional[Deadline] = None) -> HexBytes:
        deadline = deadline or Deadline.none()
        path = f"/v1/requests/{to_hex(request_id)}"
        while True:
            deadline.check()
            body = self._call("GET", path)
            status = str(body.get("status", "")).lower()
            if status in FINAL_STATUSES:
                tx_hash = _hex(body.get("tx_hash"), "tx_hash")
                logger.info(f"Request finalized in tx {to_hex(tx_hash)}")
                return tx_hash
            if status in FAILED_STATUSES:
                message = f"request ended with status {status!r}"
                if body.get("error"):
                    message += f": {body['error']}"
                raise GatewayError(message)
            logger.debug(f"Request status {status!r}, polling again in {self.poll_interval}s")
            deadline.wait(self.poll_interval)
