"""
Service layer: the availability controller and the sync gateway boundary.
"""

from .availability_controller import (
    AvailabilityController,
    OperationResult,
    OperationState,
    PendingOperation,
)
from .sync_gateway import RemoteSnapshot, SyncGatewayProtocol

__all__ = [
    "AvailabilityController",
    "OperationResult",
    "OperationState",
    "PendingOperation",
    "RemoteSnapshot",
    "SyncGatewayProtocol",
]
