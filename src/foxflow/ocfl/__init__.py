# ABOUTME: OCFL writing side of foxflow
# ABOUTME: Exposes storage, resource headers, persistence paths and the archive group writer

from foxflow.ocfl.headers import ExternalHandling, InteractionModel, ResourceHeaders
from foxflow.ocfl.store import OcflObjectSession, OcflRepository, WriteResult
from foxflow.ocfl.writer import ArchiveGroupWriter

__all__ = [
    "ArchiveGroupWriter",
    "ExternalHandling",
    "InteractionModel",
    "OcflObjectSession",
    "OcflRepository",
    "ResourceHeaders",
    "WriteResult",
]
