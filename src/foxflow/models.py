# ABOUTME: Data models for decoded FOXML objects and their reconstructed version timeline
# ABOUTME: Defines object info, properties, datastreams, versions and object references

import logging
from dataclasses import dataclass, field
from enum import Enum

from foxflow.content import ContentAccessor, URLContent
from foxflow.exceptions import ContentUnavailableError

logger = logging.getLogger(__name__)


class ControlGroup(str, Enum):
    MANAGED = "M"
    EXTERNAL = "E"
    REDIRECT = "R"
    INLINE_XML = "X"

    @property
    def is_url_backed(self) -> bool:
        return self in (ControlGroup.EXTERNAL, ControlGroup.REDIRECT)


class DatastreamState(str, Enum):
    ACTIVE = "A"
    INACTIVE = "I"
    DELETED = "D"


@dataclass(frozen=True)
class ObjectInfo:
    """Identity of one legacy object."""

    pid: str
    fedora_uri: str | None = None


@dataclass(frozen=True)
class ObjectProperty:
    name: str
    value: str


@dataclass
class ObjectProperties:
    """Ordered object-level properties (unversioned in FOXML)."""

    properties: list[ObjectProperty] = field(default_factory=list)

    def get(self, name: str) -> str | None:
        """Return the value of the first property with this name, if any."""
        for prop in self.properties:
            if prop.name == name:
                return prop.value
        return None

    def __iter__(self):
        return iter(self.properties)

    def __len__(self):
        return len(self.properties)


@dataclass(frozen=True)
class DatastreamInfo:
    object_info: ObjectInfo
    datastream_id: str
    control_group: ControlGroup
    state: DatastreamState = DatastreamState.ACTIVE
    fedora_uri: str | None = None
    versionable: bool = True


@dataclass(frozen=True)
class ContentDigest:
    algorithm: str
    digest: str


@dataclass(eq=False)
class DatastreamVersion:
    """
    One version of a datastream.

    Versions are compared by identity. They are only valid while the object
    that produced them is being processed: temporary content is removed once
    the decoder finishes with the object.
    """

    info: DatastreamInfo
    version_id: str
    created: str
    content: ContentAccessor
    label: str = ""
    mime_type: str = ""
    alt_ids: list[str] = field(default_factory=list)
    format_uri: str | None = None
    size: int = -1
    content_digest: ContentDigest | None = None

    @property
    def datastream_id(self) -> str:
        return self.info.datastream_id

    @property
    def external_url(self) -> str:
        """URL of External and Redirect content.

        Raises:
            ContentUnavailableError: If this version is not URL-backed
        """
        if isinstance(self.content, URLContent):
            return self.content.url
        raise ContentUnavailableError(
            f"Datastream version {self.version_id} of {self.info.object_info.pid} "
            "is not backed by a URL"
        )

    def open(self):
        return self.content.open()

    def is_first_version_in(self, obj: "ObjectReference") -> bool:
        versions = obj.versions(self.datastream_id)
        return bool(versions) and versions[0] is self

    def is_last_version_in(self, obj: "ObjectReference") -> bool:
        versions = obj.versions(self.datastream_id)
        return bool(versions) and versions[-1] is self


@dataclass
class ObjectReference:
    """Random-access view of a fully decoded object."""

    object_info: ObjectInfo
    properties: ObjectProperties
    datastreams: dict[str, list[DatastreamVersion]] = field(default_factory=dict)
    had_disseminators: bool = False

    @property
    def pid(self) -> str:
        return self.object_info.pid

    def datastream_ids(self) -> list[str]:
        return list(self.datastreams)

    def versions(self, datastream_id: str) -> list[DatastreamVersion]:
        return self.datastreams.get(datastream_id, [])

    def all_versions(self) -> list[DatastreamVersion]:
        return [dv for versions in self.datastreams.values() for dv in versions]


@dataclass
class ObjectVersionReference:
    """One entry of an object's reconstructed chronological timeline."""

    object: ObjectReference
    version_date: str
    changed: list[DatastreamVersion]
    version_index: int
    is_first: bool
    is_last: bool

    @property
    def object_info(self) -> ObjectInfo:
        return self.object.object_info

    @property
    def object_properties(self) -> ObjectProperties:
        return self.object.properties

    def was_datastream_changed(self, datastream_id: str) -> bool:
        return any(dv.datastream_id == datastream_id for dv in self.changed)
