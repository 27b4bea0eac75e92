# ABOUTME: Handler chain between the FOXML decoder and the archive writer
# ABOUTME: Accumulates decoder callbacks into object references and version timelines

import logging
from typing import Protocol

from foxflow.models import (
    DatastreamVersion,
    ObjectInfo,
    ObjectProperties,
    ObjectReference,
    ObjectVersionReference,
)
from foxflow.versions import reconstruct_versions

logger = logging.getLogger(__name__)


class StreamingObjectHandler(Protocol):
    """Receiver of decoder callbacks for one object at a time."""

    def begin_object(self, object_info: ObjectInfo) -> None: ...

    def process_object_properties(self, properties: ObjectProperties) -> None: ...

    def process_datastream_version(self, version: DatastreamVersion) -> None: ...

    def process_disseminator(self) -> None: ...

    def complete_object(self, object_info: ObjectInfo) -> None: ...

    def abort_object(self, object_info: ObjectInfo) -> None: ...


class ObjectHandler(Protocol):
    def process_object(self, obj: ObjectReference) -> None: ...


class VersionHandler(Protocol):
    def process_object_versions(
        self, obj: ObjectReference, versions: list[ObjectVersionReference]
    ) -> None: ...


class ObjectAbstractionHandler:
    """
    Collects one object's callbacks into an ObjectReference.

    The finished reference is passed to ``object_handler`` on completion.
    State is reset after every complete or abort so one instance can serve
    a whole batch.
    """

    def __init__(self, object_handler: ObjectHandler):
        self.object_handler = object_handler
        self._reset()

    def _reset(self):
        self._object_info: ObjectInfo | None = None
        self._properties = ObjectProperties()
        self._datastreams: dict[str, list[DatastreamVersion]] = {}
        self._disseminators = 0

    def begin_object(self, object_info: ObjectInfo) -> None:
        self._reset()
        self._object_info = object_info

    def process_object_properties(self, properties: ObjectProperties) -> None:
        self._properties = properties

    def process_datastream_version(self, version: DatastreamVersion) -> None:
        self._datastreams.setdefault(version.datastream_id, []).append(version)

    def process_disseminator(self) -> None:
        self._disseminators += 1

    def complete_object(self, object_info: ObjectInfo) -> None:
        try:
            self.object_handler.process_object(
                ObjectReference(
                    object_info=object_info,
                    properties=self._properties,
                    datastreams=self._datastreams,
                    had_disseminators=self._disseminators > 0,
                )
            )
        finally:
            self._reset()

    def abort_object(self, object_info: ObjectInfo) -> None:
        self._reset()


class VersionAbstractionHandler:
    """Turns an ObjectReference into its version timeline for a VersionHandler."""

    def __init__(self, version_handler: VersionHandler):
        self.version_handler = version_handler

    def process_object(self, obj: ObjectReference) -> None:
        versions = reconstruct_versions(obj)
        logger.debug(f"{obj.pid}: {len(versions)} object versions")
        self.version_handler.process_object_versions(obj, versions)


class ConsoleLoggingHandler:
    """Logs every decoder callback; useful for inspecting FOXML files."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def begin_object(self, object_info: ObjectInfo) -> None:
        logger.log(self.level, f"Object {object_info.pid}")

    def process_object_properties(self, properties: ObjectProperties) -> None:
        for prop in properties:
            logger.log(self.level, f"  {prop.name} = {prop.value}")

    def process_datastream_version(self, version: DatastreamVersion) -> None:
        logger.log(
            self.level,
            f"  {version.datastream_id} {version.version_id} "
            f"({version.info.control_group.value}) {version.created} {version.mime_type}",
        )

    def process_disseminator(self) -> None:
        logger.log(self.level, "  disseminator (skipped)")

    def complete_object(self, object_info: ObjectInfo) -> None:
        logger.log(self.level, f"Completed {object_info.pid}")

    def abort_object(self, object_info: ObjectInfo) -> None:
        logger.log(self.level, f"Aborted {object_info.pid}")
