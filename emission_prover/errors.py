"""Exception types raised across the emission prover."""


class EmissionProverError(Exception):
    pass


class ConfigError(EmissionProverError):
    pass


class NotReadyError(EmissionProverError):
    """Submission attempted before the circuit was prepared."""

    def __init__(self, message="Circuit not prepared yet. Please try again later."):
        super().__init__(message)


class CircuitInputError(EmissionProverError):
    pass


class ProvingError(EmissionProverError):
    pass


class UnsatisfiableCircuitError(ProvingError):
    """A witness could not satisfy every circuit constraint."""

    def __init__(self, failed_constraints):
        self.failed_constraints = list(failed_constraints)
        labels = ", ".join(self.failed_constraints[:5])
        if len(self.failed_constraints) > 5:
            labels += f", ... ({len(self.failed_constraints)} total)"
        super().__init__(f"circuit constraints not satisfied: {labels}")


class GatewayError(EmissionProverError):
    pass


class DeadlineExceeded(EmissionProverError):
    pass


class Cancelled(EmissionProverError):
    pass


class StageError(EmissionProverError):
    """A pipeline stage failed; ``stage`` names it and ``cause`` holds the original error."""

    def __init__(self, stage, description, cause):
        self.stage = stage
        self.description = description
        self.cause = cause
        super().__init__(f"Error {description}: {cause}")
