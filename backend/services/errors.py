"""
Errors raised by the assessment engine.

Configuration problems are fatal at construction time. Everything else is a
contract violation by the caller: the operation is rejected and the trial log
is left untouched.
"""


class ConfigurationError(ValueError):
    """Assessment policy is inconsistent (thresholds, block size, rule order)."""


class RejectedOperationError(RuntimeError):
    """The engine refused an operation; no state was changed."""


class SessionCompleteError(RejectedOperationError):
    pass


class TrialOrderError(RejectedOperationError):
    pass


class InvalidResponseError(RejectedOperationError):
    pass


class ResultNotReadyError(RejectedOperationError):
    pass
