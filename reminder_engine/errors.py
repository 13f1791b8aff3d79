"""Exception taxonomy for the reminder timing engine.

Analysis and prediction failures are raised close to where the fault happens
and recovered by the caller into a low-confidence result. ValidationFailure is
the exception: it reaches the caller of the public operation, and the HTTP
layer maps it to a 400 response.
"""


class ReminderEngineError(Exception):
    """Base class for engine errors."""


class TransientAnalysisFailure(ReminderEngineError):
    """A context source could not produce an estimate right now."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class PredictionFailure(ReminderEngineError):
    """Pattern-based timing prediction could not be computed."""


class ValidationFailure(ReminderEngineError):
    """Feedback or context input is malformed."""
