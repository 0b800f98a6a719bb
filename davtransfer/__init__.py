#!/usr/bin/env python
import logging

__version__ = "0.3.0"

from .session import DAVSession
from .coordinator import ChunkUploadCoordinator
from .operation import CancellationToken, TransferOperation
from .protocol.types import OutcomeKind, TransferOutcome

# Silence notification of no default logging handler
log = logging.getLogger("davtransfer")


class NullHandler(logging.Handler):
    def emit(self, record) -> None:
        pass


log.addHandler(NullHandler())

__all__ = [
    "__version__",
    "DAVSession",
    "ChunkUploadCoordinator",
    "CancellationToken",
    "TransferOperation",
    "OutcomeKind",
    "TransferOutcome",
]
