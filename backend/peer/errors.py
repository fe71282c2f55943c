"""Errors raised while bootstrapping a peer connection."""


class BootstrapError(Exception):
    """Base class for connection bootstrap failures."""


class InvalidDescriptorError(BootstrapError):
    """A pasted or received descriptor could not be parsed. The attempt can be retried."""


class InvalidStateError(BootstrapError):
    """The requested operation is not valid in the current bootstrap state."""


class NegotiationTimeoutError(BootstrapError):
    """The data channel did not open within the grace period."""


class TransportError(BootstrapError):
    """The underlying peer connection reported an error."""


class BootstrapCancelledError(BootstrapError):
    """The attempt was abandoned by a reset while an operation was in flight."""


class SignalingError(Exception):
    """The signaling relay connection closed or did not answer in time."""
