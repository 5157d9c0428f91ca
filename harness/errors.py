# harness/errors.py - the one failure the simulated backend can produce
from typing import Any, Optional


class SimulatedFailure(Exception):
    """Raised by SimulatedRequestEngine when the configured failure mode triggers."""

    def __init__(self, message: str = "Simulated API error", spec: Optional[Any] = None):
        super().__init__(message)
        self.spec = spec
