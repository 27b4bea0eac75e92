# ABOUTME: Archive group writer replaying an object's version timeline into OCFL storage
# ABOUTME: Generates resource headers and descriptions, validates digests, handles deletions
"""Archive group writer.

Each timeline entry becomes one OCFL version of the object. All versions of
an object are staged before the first one is committed, so an object that
fails part way (bad digest, missing content) leaves nothing in storage.
"""

import logging
import mimetypes
from dataclasses import dataclass, field

from rdflib import URIRef

from foxflow.config import MigrationConfig
from foxflow.exceptions import DigestMismatchError, ParseError, StorageCommitError
from foxflow.models import (
    ControlGroup,
    DatastreamState,
    DatastreamVersion,
    ObjectReference,
    ObjectVersionReference,
)
from foxflow.ocfl import paths, rdf
from foxflow.ocfl.headers import ExternalHandling, InteractionModel, ResourceHeaders
from foxflow.ocfl.store import OcflObjectSession, OcflRepository
from foxflow.utils import (
    LEGACY_DIGEST_NAMES,
    format_timestamp,
    hashlib_name,
    parse_legacy_date,
    state_token,
)

logger = logging.getLogger(__name__)

FCREPO_ROOT = "info:fedora"
DESCRIPTION_SUFFIX = "/fcr:metadata"
OBJ_STATE_PROP = "info:fedora/fedora-system:def/model#state"
OBJ_CREATED_PROP = "info:fedora/fedora-system:def/model#createdDate"
OBJ_LAST_MODIFIED_PROP = "info:fedora/fedora-system:def/view#lastModifiedDate"
OBJ_INACTIVE = "Inactive"
OBJ_DELETED = "Deleted"
RELS_EXT = "RELS-EXT"
RELS_INT = "RELS-INT"

# Preferred extensions where mimetypes is ambiguous
MIME_EXTENSIONS = {
    "application/pdf": "pdf",
    "text/plain": "txt",
    "text/html": "html",
    "text/xml": "xml",
    "application/xml": "xml",
    "application/rdf+xml": "rdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/tiff": "tif",
    "audio/mpeg": "mp3",
    "video/mp4": "mp4",
}


def extension_for_mime_type(mime_type: str) -> str:
    """File extension (without dot) for a mime type, or "" if unknown."""
    mime_type = mime_type.split(";")[0].strip().lower()
    if mime_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip(".") if guessed else ""


def digest_urn(algorithm: str, hex_digest: str) -> str:
    """Digest URN such as urn:sha-512:abc... for a hashlib algorithm name."""
    labels = {name: label.lower() for label, name in LEGACY_DIGEST_NAMES.items()}
    return f"urn:{labels.get(algorithm, algorithm)}:{hex_digest.lower()}"


@dataclass
class _Resource:
    headers: ResourceHeaders
    header_path: str
    content_path: str
    triples: list = field(default_factory=list)
    relationships: list = field(default_factory=list)


@dataclass
class _Binary:
    datastream_id: str
    name: str
    resource_id: str
    first_created: str
    state: DatastreamState
    version: DatastreamVersion
    mime_type: str


@dataclass
class _ObjectState:
    """What the writer knows about one object while staging its versions."""

    object_id: str
    resources: dict[str, _Resource] = field(default_factory=dict)
    binaries: dict[str, _Binary] = field(default_factory=dict)
    internal_relationships: dict[str, list] = field(default_factory=dict)
    download_names: dict[str, str] = field(default_factory=dict)


class ArchiveGroupWriter:
    """
    Writes each object as an OCFL archive group.

    Args:
        repository: Destination storage
        config: Run configuration (naming, validation and import options)
    """

    def __init__(self, repository: OcflRepository, config: MigrationConfig):
        self.repository = repository
        self.config = config
        self.migration_time = format_timestamp(config.migration_time)

    def process_object_versions(
        self, obj: ObjectReference, versions: list[ObjectVersionReference]
    ) -> None:
        """
        Stage and commit every version of an object.

        Args:
            obj: The decoded object
            versions: Its timeline, oldest first

        Raises:
            DigestMismatchError: If written content disagrees with a declared digest
            StorageCommitError: If the object exists or storage fails
        """
        object_id = self.config.id_prefix + obj.pid
        if self.repository.contains_object(object_id):
            raise StorageCommitError(
                f"{object_id} already exists in {self.repository.storage_root}",
                recovery_hint="Use --resume to skip objects migrated by an earlier run",
            )
        if obj.had_disseminators:
            logger.warning(f"{obj.pid}: disseminators are not migrated")

        state = _ObjectState(object_id=object_id)
        sessions: list[OcflObjectSession] = []
        try:
            if versions:
                for ov in versions:
                    session = self._new_session(object_id, ov.version_date)
                    sessions.append(session)
                    self._stage_version(state, session, ov)
            else:
                session = self._new_session(object_id, self._root_only_date(obj))
                sessions.append(session)
                self._stage_root(state, session, obj)
            deletions = self._stage_deletions(state, obj)
            if deletions is not None:
                sessions.append(deletions)
        except Exception:
            for session in sessions:
                session.abort()
            raise

        committed = 0
        try:
            for session in sessions:
                session.commit()
                committed += 1
        finally:
            for session in sessions[committed:]:
                session.abort()

        logger.info(f"Migrated {obj.pid} to {object_id} in {committed} versions")

    # Staging

    def _new_session(self, object_id: str, version_date: str | None) -> OcflObjectSession:
        if version_date:
            created = self._parse_date(version_date, object_id)
        else:
            created = self.config.migration_time
        session = self.repository.new_session(object_id)
        session.version_created = created
        return session

    def _stage_version(
        self, state: _ObjectState, session: OcflObjectSession, ov: ObjectVersionReference
    ) -> None:
        to_describe: dict[str, None] = {}
        if ov.is_first:
            self._stage_root(state, session, ov.object)

        for dv in ov.changed:
            binary = self._track_binary(state, ov.object, dv)
            self._write_binary(state, session, binary)
            to_describe[self._describe_binary(state, binary)] = None

            if dv.datastream_id == RELS_EXT:
                root = state.resources[state.object_id]
                root.relationships = self._relationships(dv, state.object_id, state.object_id)
                to_describe[state.object_id] = None
            elif dv.datastream_id == RELS_INT:
                for ds_id in self._apply_internal_relationships(state, dv):
                    affected = state.binaries.get(ds_id)
                    if affected is not None:
                        self._write_binary_headers(state, session, affected)
                        to_describe[self._describe_binary(state, affected)] = None

        for resource_id in to_describe:
            self._write_resource(session, state.resources[resource_id])

    def _stage_root(
        self, state: _ObjectState, session: OcflObjectSession, obj: ObjectReference
    ) -> None:
        last_modified = obj.properties.get(OBJ_LAST_MODIFIED_PROP)
        headers = ResourceHeaders(
            id=state.object_id,
            parent=FCREPO_ROOT,
            interaction_model=InteractionModel.BASIC_CONTAINER,
            archival_group=True,
            object_root=True,
            created_date=self.migration_time,
            created_by=self.config.user,
            last_modified_date=self.migration_time,
            last_modified_by=self.config.user,
            state_token=self._state_token(last_modified, state.object_id) if last_modified else None,
            content_path=paths.root_content_path(),
        )
        root = _Resource(
            headers=headers,
            header_path=paths.root_header_path(),
            content_path=paths.root_content_path(),
            triples=rdf.property_triples(state.object_id, obj.properties),
        )
        state.resources[state.object_id] = root
        self._write_resource(session, root)

    def _track_binary(
        self, state: _ObjectState, obj: ObjectReference, dv: DatastreamVersion
    ) -> _Binary:
        ds_id = dv.datastream_id
        mime_type = self._mime_type(dv)
        known = state.binaries.get(ds_id)
        if known is not None:
            known.version = dv
            known.mime_type = mime_type
            known.state = dv.info.state
            return known

        name = ds_id
        if self.config.add_datastream_extensions and mime_type:
            extension = extension_for_mime_type(mime_type)
            if not extension:
                logger.warning(f"{obj.pid}/{ds_id}: no file extension known for {mime_type}")
            elif not ds_id.lower().endswith(f".{extension}"):
                name = f"{ds_id}.{extension}"

        first = obj.versions(ds_id)[0]
        binary = _Binary(
            datastream_id=ds_id,
            name=name,
            resource_id=f"{state.object_id}/{name}",
            first_created=first.created,
            state=dv.info.state,
            version=dv,
            mime_type=mime_type,
        )
        state.binaries[ds_id] = binary
        return binary

    def _write_binary(
        self, state: _ObjectState, session: OcflObjectSession, binary: _Binary
    ) -> None:
        dv = binary.version
        control_group = dv.info.control_group
        headers = self._binary_headers(state, binary)

        if control_group.is_url_backed and not self._imports(control_group):
            handling = (
                ExternalHandling.PROXY
                if control_group is ControlGroup.EXTERNAL
                else ExternalHandling.REDIRECT
            )
            update = {"external_handling": handling, "external_url": dv.external_url}
            if dv.size > -1:
                update["content_size"] = dv.size
            declared = self._declared_algorithm(state, dv)
            if declared:
                update["digests"] = [digest_urn(declared, dv.content_digest.digest)]
            headers = headers.model_copy(update=update)
        else:
            headers = self._write_content(state, session, binary, headers)

        state.resources[binary.resource_id] = _Resource(
            headers=headers,
            header_path=paths.binary_header_path(binary.name),
            content_path=paths.binary_content_path(binary.name),
        )
        session.write_bytes(paths.binary_header_path(binary.name), headers.to_json_bytes())

    def _write_content(
        self,
        state: _ObjectState,
        session: OcflObjectSession,
        binary: _Binary,
        headers: ResourceHeaders,
    ) -> ResourceHeaders:
        dv = binary.version
        where = f"{state.object_id}/{dv.datastream_id}"
        algorithm = self._declared_algorithm(state, dv)
        extra = (algorithm,) if algorithm else ()

        stream = dv.open()
        try:
            result = session.write_stream(paths.binary_content_path(binary.name), stream, extra)
        finally:
            stream.close()

        if algorithm and self.config.validate_checksums:
            expected = dv.content_digest.digest.lower()
            actual = result.digests[algorithm]
            if actual != expected:
                raise DigestMismatchError(
                    f"Digest mismatch for {where} version {dv.version_id}: "
                    f"expected {dv.content_digest.algorithm} {expected}, computed {actual}",
                    recovery_hint="Use --no-checksum-validation to migrate the content as is",
                )
        if dv.info.control_group is ControlGroup.MANAGED and dv.content_digest is None:
            logger.warning(f"{where}: managed datastream without a declared digest")

        if algorithm:
            digest = digest_urn(algorithm, result.digests[algorithm])
        else:
            storage_algorithm = self.repository.digest_algorithm
            digest = digest_urn(storage_algorithm, result.digests[storage_algorithm])
        return headers.model_copy(
            update={
                "content_size": result.size,
                "digests": [digest],
                "content_path": paths.binary_content_path(binary.name),
            }
        )

    def _write_binary_headers(
        self, state: _ObjectState, session: OcflObjectSession, binary: _Binary
    ) -> None:
        resource = state.resources[binary.resource_id]
        filename = state.download_names.get(binary.datastream_id, binary.name)
        if resource.headers.filename != filename:
            resource.headers = resource.headers.model_copy(update={"filename": filename})
            session.write_bytes(resource.header_path, resource.headers.to_json_bytes())

    def _binary_headers(self, state: _ObjectState, binary: _Binary) -> ResourceHeaders:
        return ResourceHeaders(
            id=binary.resource_id,
            parent=state.object_id,
            archival_group_id=state.object_id,
            interaction_model=InteractionModel.NON_RDF_SOURCE,
            mime_type=binary.mime_type,
            filename=state.download_names.get(binary.datastream_id, binary.name),
            created_date=self.migration_time,
            created_by=self.config.user,
            last_modified_date=self.migration_time,
            last_modified_by=self.config.user,
            state_token=self._state_token(binary.version.created, state.object_id),
        )

    def _describe_binary(self, state: _ObjectState, binary: _Binary) -> str:
        """Refresh the description resource of a binary; returns its id."""
        binary_headers = state.resources[binary.resource_id].headers
        description_id = binary.resource_id + DESCRIPTION_SUFFIX
        headers = ResourceHeaders(
            id=description_id,
            parent=binary.resource_id,
            archival_group_id=state.object_id,
            interaction_model=InteractionModel.NON_RDF_SOURCE_DESCRIPTION,
            created_date=binary_headers.created_date,
            created_by=binary_headers.created_by,
            last_modified_date=binary_headers.last_modified_date,
            last_modified_by=binary_headers.last_modified_by,
            state_token=binary_headers.state_token,
            content_path=paths.description_content_path(binary.name),
        )
        triples = rdf.datastream_triples(
            binary.resource_id,
            binary.version,
            binary.mime_type,
            digest=binary_headers.digests[0] if binary_headers.digests else None,
            created=binary.first_created,
            size=binary_headers.content_size,
            rich=self.config.rich_descriptions,
        )
        state.resources[description_id] = _Resource(
            headers=headers,
            header_path=paths.description_header_path(binary.name),
            content_path=paths.description_content_path(binary.name),
            triples=triples,
            relationships=self._rebase(
                state.internal_relationships.get(binary.datastream_id, []), binary.resource_id
            ),
        )
        return description_id

    def _write_resource(self, session: OcflObjectSession, resource: _Resource) -> None:
        session.write_bytes(
            resource.content_path, rdf.to_ntriples(resource.triples + resource.relationships)
        )
        session.write_bytes(resource.header_path, resource.headers.to_json_bytes())

    def _stage_deletions(
        self, state: _ObjectState, obj: ObjectReference
    ) -> OcflObjectSession | None:
        """Stage a final version marking deleted resources, if there are any."""
        doomed_states = {DatastreamState.DELETED}
        object_states = {OBJ_DELETED}
        if self.config.delete_inactive:
            doomed_states.add(DatastreamState.INACTIVE)
            object_states.add(OBJ_INACTIVE)

        delete_all = obj.properties.get(OBJ_STATE_PROP) in object_states
        doomed = [
            binary
            for binary in state.binaries.values()
            if delete_all or binary.state in doomed_states
        ]
        if not doomed and not delete_all:
            return None

        session = self._new_session(state.object_id, None)
        try:
            for binary in doomed:
                self._mark_deleted(session, state.resources[binary.resource_id])
                self._mark_deleted(
                    session, state.resources[binary.resource_id + DESCRIPTION_SUFFIX]
                )
            if delete_all and state.object_id in state.resources:
                self._mark_deleted(session, state.resources[state.object_id])
        except Exception:
            session.abort()
            raise
        logger.info(f"{obj.pid}: marking {len(doomed)} datastreams deleted")
        return session

    def _mark_deleted(self, session: OcflObjectSession, resource: _Resource) -> None:
        resource.headers = resource.headers.model_copy(
            update={
                "deleted": True,
                "last_modified_date": self.migration_time,
                "last_modified_by": self.config.user,
            }
        )
        session.delete(resource.content_path)
        session.write_bytes(resource.header_path, resource.headers.to_json_bytes())

    # Relationships

    def _relationships(self, dv: DatastreamVersion, source_subject: str, subject: str) -> list:
        triples = rdf.parse_relationships(self._read(dv), f"{source_subject} {dv.datastream_id}")
        return self._rebase(triples, subject)

    def _apply_internal_relationships(self, state: _ObjectState, dv: DatastreamVersion) -> set[str]:
        """Replace RELS-INT relationships; returns the datastream ids affected."""
        prefix = f"{FCREPO_ROOT}/{dv.info.object_info.pid}/"
        grouped: dict[str, list] = {}
        names: dict[str, str] = {}
        triples = rdf.parse_relationships(self._read(dv), f"{state.object_id} {RELS_INT}")
        for triple in triples:
            subject = str(triple[0])
            if not subject.startswith(prefix):
                logger.warning(f"{state.object_id}: ignoring RELS-INT subject {subject}")
                continue
            ds_id = subject[len(prefix):]
            grouped.setdefault(ds_id, []).append(triple)
            if triple[1] == rdf.DOWNLOAD_FILENAME:
                names[ds_id] = str(triple[2])

        affected = set(state.internal_relationships) | set(grouped)
        state.internal_relationships = grouped
        state.download_names = names
        return affected

    @staticmethod
    def _rebase(triples: list, subject: str) -> list:
        node = URIRef(subject)
        return [(node, predicate, value) for _, predicate, value in triples]

    @staticmethod
    def _read(dv: DatastreamVersion) -> bytes:
        stream = dv.open()
        try:
            return stream.read()
        finally:
            stream.close()

    # Helpers

    def _imports(self, control_group: ControlGroup) -> bool:
        if control_group is ControlGroup.EXTERNAL:
            return self.config.import_external
        return self.config.import_redirect

    def _declared_algorithm(self, state: _ObjectState, dv: DatastreamVersion) -> str | None:
        digest = dv.content_digest
        if digest is None or not digest.digest or digest.algorithm in ("", "DISABLED"):
            return None
        algorithm = hashlib_name(digest.algorithm)
        if algorithm is None:
            logger.warning(
                f"{state.object_id}/{dv.datastream_id}: unknown digest algorithm "
                f"{digest.algorithm}, not validating"
            )
        return algorithm

    def _mime_type(self, dv: DatastreamVersion) -> str:
        if dv.mime_type:
            return dv.mime_type
        guessed, _ = mimetypes.guess_type(dv.datastream_id)
        if guessed:
            return guessed
        if dv.info.control_group is ControlGroup.INLINE_XML:
            return "text/xml"
        return "application/octet-stream"

    def _root_only_date(self, obj: ObjectReference) -> str | None:
        return obj.properties.get(OBJ_LAST_MODIFIED_PROP) or obj.properties.get(OBJ_CREATED_PROP)

    def _parse_date(self, value: str, object_id: str):
        try:
            return parse_legacy_date(value)
        except ValueError as e:
            raise ParseError(f"{object_id}: invalid date {value!r}") from e

    def _state_token(self, value: str, object_id: str) -> str:
        try:
            return state_token(value)
        except ValueError as e:
            raise ParseError(f"{object_id}: invalid date {value!r}") from e
