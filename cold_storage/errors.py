from __future__ import annotations


class GatePassEngineError(Exception):
    kind = 'error'
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GatePassEngineError):
    kind = 'validation_error'
    status_code = 400


class NotFoundError(GatePassEngineError):
    kind = 'not_found'
    status_code = 404


class InsufficientStockError(GatePassEngineError):
    kind = 'insufficient_stock'
    status_code = 409

    def __init__(self, message: str, *, requested: int, available: int) -> None:
        super().__init__(message)
        self.requested = requested
        self.available = available


class InsufficientAllowanceError(GatePassEngineError):
    kind = 'insufficient_allowance'
    status_code = 402

    def __init__(self, message: str, *, requested: int, allowance: int) -> None:
        super().__init__(message)
        self.requested = requested
        self.allowance = allowance


class InvalidStateTransitionError(GatePassEngineError):
    kind = 'invalid_state_transition'
    status_code = 409


class ConcurrentUpdateError(InvalidStateTransitionError):
    kind = 'concurrent_update'


class ExpiredError(GatePassEngineError):
    """The deadline passed; the pass was moved to EXPIRED in the caller's transaction."""

    kind = 'expired'
    status_code = 410

    def __init__(self, message: str, *, gate_pass_id: int) -> None:
        super().__init__(message)
        self.gate_pass_id = gate_pass_id


class ConsistencyError(GatePassEngineError):
    """An invariant failed after a mutation. Not user facing; needs operator review."""

    kind = 'consistency_error'
    status_code = 500

    def __init__(self, message: str, *, thock_number: str) -> None:
        super().__init__(message)
        self.thock_number = thock_number
