"""One-shot preparation gate around circuit compilation.

State moves NOT_PREPARED -> PREPARING -> PREPARED and never leaves
PREPARED. A single lock is held for the whole compile call, so at most one
compilation runs at a time and readers of the state wait behind it.
A failed compile returns the gate to NOT_PREPARED and a later trigger
retries.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from emission_prover.circuit import EmissionCircuit
from emission_prover.prover import ChainContext, ProvingBackend

logger = logging.getLogger(__name__)


class PreparationState(Enum):
    NOT_PREPARED = "not_prepared"
    PREPARING = "preparing"
    PREPARED = "prepared"


@dataclass(frozen=True)
class GateStatus:
    state: PreparationState
    compile_attempts: int
    last_error: Optional[str] = None


class PreparationGate:
    def __init__(self, backend: ProvingBackend, make_circuit: Callable[[], EmissionCircuit],
                 circuit_dir: Path, srs_dir: Path, chain: ChainContext,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.backend = backend
        self.make_circuit = make_circuit
        self.circuit_dir = Path(circuit_dir)
        self.srs_dir = Path(srs_dir)
        self.chain = chain
        self._lock = threading.Lock()
        self._state = PreparationState.NOT_PREPARED
        self._attempts = 0
        self._last_error: Optional[str] = None
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="prepare")

    def trigger(self) -> Future:
        """Schedule preparation in the background and return its future.

        The future resolves to the state reached; compile errors are logged
        and kept in ``status().last_error``, never raised through it.
        """
        return self._executor.submit(self.prepare)

    def prepare(self) -> PreparationState:
        with self._lock:
            if self._state is PreparationState.PREPARED:
                logger.info("Circuit already prepared.")
                return self._state

            previous = self._state
            self._state = PreparationState.PREPARING
            self._attempts += 1
            try:
                circuit = self.make_circuit()
                self.backend.compile(circuit, self.circuit_dir, self.srs_dir, self.chain)
            except Exception as e:
                self._state = previous
                self._last_error = str(e)
                logger.exception(f"Error compiling circuit: {e}")
                return self._state

            self._state = PreparationState.PREPARED
            self._last_error = None
            logger.info("Circuit preparation complete.")
            return self._state

    def is_prepared(self) -> bool:
        with self._lock:
            return self._state is PreparationState.PREPARED

    def status(self) -> GateStatus:
        with self._lock:
            return GateStatus(state=self._state, compile_attempts=self._attempts, last_error=self._last_error)

    def shutdown(self, wait: bool = True):
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
