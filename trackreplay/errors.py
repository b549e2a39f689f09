"""
Error types for Track Replay

Every condition raised by the replay core is local and recoverable. The
session layer catches these and reports them as status codes.
"""


class ReplayError(ValueError):
    """Base class for recoverable replay errors."""


class ParseError(ReplayError):
    """Malformed or empty track input; ingestion of that track is aborted."""


class ReferenceResolutionError(ReplayError):
    """No valid track/sample could be resolved for a start or finish point."""


class InsufficientDataError(ReplayError):
    """Fewer samples or tracks than an operation requires."""


class StateError(ReplayError):
    """Operation is not valid in the current state (e.g. nothing to play)."""
