from __future__ import annotations


class CompositorError(Exception):
    """Base class for every error raised by the compositing engine."""


class ValidationError(CompositorError):
    """A request was rejected before any work started."""


class CaptureError(CompositorError):
    """Rasterizing an object or frame failed; no partial image is produced."""


class ProviderError(CompositorError):
    """An external provider rejected a request or returned a failed result."""


class TransientPollError(ProviderError):
    """A single poll attempt failed in a way that may succeed on retry."""


class JobTimeoutError(CompositorError, TimeoutError):
    """Polling gave up after the configured wall-clock budget."""
