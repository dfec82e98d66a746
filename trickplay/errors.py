from __future__ import annotations


class TrickplayError(RuntimeError):
    """Base class for failures raised by the BIF build pipeline."""


class BuildCancelledError(TrickplayError):
    """Raised when a cancellation signal is observed between units of work."""


class FrameExtractionError(TrickplayError):
    pass


class BifWriteError(TrickplayError):
    pass
