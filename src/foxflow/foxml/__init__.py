# ABOUTME: FOXML decoding side of foxflow
# ABOUTME: Exposes the streaming decoder, id resolvers and directory object sources

from foxflow.foxml.decoder import FoxmlDecoder
from foxflow.foxml.resolvers import (
    AkubraFSIDResolver,
    InternalIDResolver,
    LegacyFSIDResolver,
)
from foxflow.foxml.sources import (
    ArchiveExportedFoxmlDirectoryObjectSource,
    FoxmlDirectoryObjectSource,
    NativeFoxmlDirectoryObjectSource,
)

__all__ = [
    "FoxmlDecoder",
    "InternalIDResolver",
    "AkubraFSIDResolver",
    "LegacyFSIDResolver",
    "FoxmlDirectoryObjectSource",
    "NativeFoxmlDirectoryObjectSource",
    "ArchiveExportedFoxmlDirectoryObjectSource",
]
