from enum import StrEnum


class BootstrapState(StrEnum):
    IDLE = "idle"
    LOCAL_DESCRIPTOR_PENDING = "local_descriptor_pending"
    LOCAL_DESCRIPTOR_READY = "local_descriptor_ready"
    AWAITING_REMOTE_DESCRIPTOR = "awaiting_remote_descriptor"
    CONNECTED = "connected"
    FAILED = "failed"


class Role(StrEnum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


# States in which the data channel may still open.
NEGOTIATING_STATES = frozenset(
    {
        BootstrapState.LOCAL_DESCRIPTOR_PENDING,
        BootstrapState.LOCAL_DESCRIPTOR_READY,
        BootstrapState.AWAITING_REMOTE_DESCRIPTOR,
    }
)
