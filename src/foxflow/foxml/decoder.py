# ABOUTME: Streaming FOXML decoder producing object, property and datastream version callbacks
# ABOUTME: Handles inline XML, internal and URL content locations and base64 binary content
"""Streaming FOXML decoder.

A decoder reads one serialized object in a single forward pass and reports
it to a handler:

    begin_object -> process_object_properties -> process_datastream_version*
    -> complete_object | abort_object

Content is never materialized beyond inline XML fragments; base64 content is
decoded to temporary files that live until the decoder is closed.
"""

import base64
import binascii
import hashlib
import logging
import os
import re
import tempfile
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO
from xml.sax.saxutils import escape, quoteattr

from lxml import etree

from foxflow.content import ContentAccessor, FileContent, MemoryContent, URLContent, URLFetcher
from foxflow.exceptions import ContentUnavailableError, DigestMismatchError, ParseError
from foxflow.foxml.events import (
    COMMENT,
    END,
    PI,
    READ_SIZE,
    START,
    TEXT,
    XmlEvent,
    XmlEventReader,
    split_name,
)
from foxflow.models import (
    ContentDigest,
    ControlGroup,
    DatastreamInfo,
    DatastreamState,
    DatastreamVersion,
    ObjectInfo,
    ObjectProperties,
    ObjectProperty,
)
from foxflow.utils import hashlib_name

if TYPE_CHECKING:
    from foxflow.foxml.resolvers import InternalIDResolver
    from foxflow.handlers import StreamingObjectHandler

logger = logging.getLogger(__name__)

FOXML_NS = "info:fedora/fedora-system:def/foxml#"
XML_NS = "http://www.w3.org/XML/1998/namespace"
RDF_TYPE = "http://www.w3.org/1999/02/22-rdf-syntax-ns#type"
DC_TYPE = "http://purl.org/dc/elements/1.1/type"
CURRENT_FOXML_VERSION = "1.1"
LOCAL_SERVER_TOKEN = "local.fedora.server"

ROOT_ATTRIBUTES = ("PID", "VERSION", "FEDORA_URI", "schemaLocation")
DATASTREAM_ATTRIBUTES = ("ID", "CONTROL_GROUP", "FEDORA_URI", "STATE", "VERSIONABLE")
VERSION_ATTRIBUTES = ("ID", "LABEL", "CREATED", "MIMETYPE", "ALT_IDS", "FORMAT_URI", "SIZE")
CONTENT_ELEMENTS = ("xmlContent", "contentLocation", "binaryContent")

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>'
# Space and control characters, stripped from both ends of each serialized line
_LINE_TRIM = "".join(chr(c) for c in range(0x21))

_XML_CONTENT_TAG = re.compile(rb"<((?:[A-Za-z_][\w.\-]*:)?xmlContent)(?=[\s/>])[^>]*>")


def inline_xml_checksum_form(fragment: bytes) -> bytes:
    """
    Serialize an inline XML fragment the way its declared digest was computed.

    The fragment is parsed as a standalone document behind an XML
    declaration and serialized without indentation. Every line of the result
    is trimmed and the lines are joined.

    Raises:
        ParseError: If the fragment is not well-formed on its own
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(XML_DECLARATION + fragment, parser)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Malformed inline XML: {e}") from e
    serialized = etree.tostring(root.getroottree(), encoding="UTF-8", xml_declaration=False)
    lines = [XML_DECLARATION.decode("ascii"), *serialized.decode("utf-8").split("\n")]
    return "".join(line.strip(_LINE_TRIM) for line in lines).encode("utf-8")


class InlineFragmentScanner:
    """
    Cuts the raw text of every xmlContent element out of the input bytes.

    It is fed the same chunks as the parser, so a fragment is complete by
    the time the parser reports the end of its xmlContent element. Only the
    fragment being collected and an unfinished tag are kept in memory.
    """

    def __init__(self):
        self.fragments: deque[bytes] = deque()
        self._buffer = bytearray()
        self._scan_from = 0
        self._inner: re.Pattern | None = None
        self._start = 0
        self._depth = 0

    def feed(self, chunk: bytes) -> None:
        self._buffer += chunk
        while True:
            match = (self._inner or _XML_CONTENT_TAG).search(self._buffer, self._scan_from)
            if match is None:
                break
            self._scan_from = match.end()
            empty = match.group(0).endswith(b"/>")
            if self._inner is None:
                if empty:
                    self.fragments.append(b"")
                else:
                    name = re.escape(bytes(match.group(1)))
                    self._inner = re.compile(rb"<(/?)" + name + rb"(?=[\s/>])[^>]*>")
                    self._start = match.end()
                    self._depth = 1
            elif match.group(1):
                self._depth -= 1
                if self._depth == 0:
                    self.fragments.append(bytes(self._buffer[self._start : match.start()]))
                    self._inner = None
            elif not empty:
                self._depth += 1
        self._discard()

    def pop(self) -> bytes | None:
        return self.fragments.popleft() if self.fragments else None

    def _discard(self):
        # "<" cannot occur inside a tag, so an unfinished tag starts at the last one
        partial = self._buffer.rfind(b"<", self._scan_from)
        self._scan_from = partial if partial >= 0 else len(self._buffer)
        keep = self._start if self._inner is not None else self._scan_from
        del self._buffer[:keep]
        self._scan_from -= keep
        self._start = max(self._start - keep, 0)


class InlineXmlWriter:
    """
    Re-serializes a run of XML events as a standalone fragment.

    Namespace declarations made inside the fragment are kept where they were
    made; prefixes inherited from the surrounding document are declared on
    the first element that uses them, and ``inherits_namespaces`` is set.
    """

    def __init__(self, reader: XmlEventReader):
        self.reader = reader
        self.parts: list[str] = []
        self.inherits_namespaces = False
        self._scopes: list[dict[str, str]] = [{"xml": XML_NS}]
        self._names: list[str] = []
        self._tag_open = False
        self._generated = 0

    def start(self, event: XmlEvent) -> None:
        self._finish_tag()
        bindings = dict(self._scopes[-1])
        declarations: dict[str, str] = {}
        for prefix, uri in (event.declared or {}).items():
            declarations[prefix] = uri
            bindings[prefix] = uri

        qname = self._qualify(event.name, bindings, declarations, attribute=False)
        attributes = [
            f"{self._qualify(name, bindings, declarations, attribute=True)}={quoteattr(value)}"
            for name, value in event.attrib.items()
        ]
        namespaces = [
            f"xmlns:{prefix}={quoteattr(uri)}" if prefix else f"xmlns={quoteattr(uri)}"
            for prefix, uri in declarations.items()
        ]
        self.parts.append("<" + " ".join([qname, *namespaces, *attributes]))
        self._tag_open = True
        self._scopes.append(bindings)
        self._names.append(qname)

    def end(self) -> None:
        qname = self._names.pop()
        self._scopes.pop()
        if self._tag_open:
            self.parts.append("/>")
            self._tag_open = False
        else:
            self.parts.append(f"</{qname}>")

    def text(self, text: str) -> None:
        self._finish_tag()
        self.parts.append(escape(text))

    def comment(self, text: str) -> None:
        self._finish_tag()
        self.parts.append(f"<!--{text}-->")

    def pi(self, target: str, data: str | None) -> None:
        self._finish_tag()
        self.parts.append(f"<?{target} {data}?>" if data else f"<?{target}?>")

    @property
    def depth(self) -> int:
        return len(self._names)

    def getvalue(self) -> bytes:
        self._finish_tag()
        return "".join(self.parts).encode("utf-8")

    def _finish_tag(self) -> None:
        if self._tag_open:
            self.parts.append(">")
            self._tag_open = False

    def _qualify(self, name, bindings, declarations, attribute):
        uri, local = split_name(name)
        if uri is None:
            if not attribute and bindings.get(""):
                # Undeclare an inherited default namespace
                declarations[""] = ""
                bindings[""] = ""
            return local

        source_prefix = self.reader.prefix_for(uri)
        if source_prefix is not None and bindings.get(source_prefix) == uri:
            if source_prefix or not attribute:
                return f"{source_prefix}:{local}" if source_prefix else local
        for prefix, bound in reversed(bindings.items()):
            if bound == uri and (prefix or not attribute):
                return f"{prefix}:{local}" if prefix else local

        self.inherits_namespaces = True
        prefix = source_prefix
        if prefix is None or (attribute and not prefix) or prefix in declarations:
            self._generated += 1
            prefix = f"ns{self._generated}"
        declarations[prefix] = uri
        bindings[prefix] = uri
        return f"{prefix}:{local}" if prefix else local


class FoxmlDecoder:
    """
    Decoder for one FOXML document.

    The root element is read on construction so that ``object_info`` is
    available before the object is processed. Use as a context manager, or
    call ``close()``, to release the input and temporary files.
    """

    def __init__(
        self,
        stream: BinaryIO,
        resolver: "InternalIDResolver | None" = None,
        fetcher: URLFetcher | None = None,
        local_server: str = "localhost:8080",
        source_name: str = "<stream>",
        read_size: int = READ_SIZE,
        validate_checksums: bool = True,
    ):
        self.resolver = resolver
        self.fetcher = fetcher
        self.local_server = local_server
        self.source_name = source_name
        self.validate_checksums = validate_checksums
        self._fragments = InlineFragmentScanner()
        self.reader = XmlEventReader(
            stream, read_size=read_size, source_name=source_name, tee=self._fragments.feed
        )
        self._temp_dir: tempfile.TemporaryDirectory | None = None
        self._closed = False
        try:
            self.object_info, self.legacy = self._read_root()
        except BaseException:
            self.close()
            raise

    @classmethod
    def from_path(cls, path: Path | str, **kwargs) -> "FoxmlDecoder":
        """Open a decoder over a FOXML file."""
        return cls(open(path, "rb"), source_name=str(path), **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """Release the input stream and delete temporary decoded content."""
        if self._closed:
            return
        self._closed = True
        self.reader.close()
        if self._temp_dir is not None:
            self._temp_dir.cleanup()
            self._temp_dir = None

    def process(self, handler: "StreamingObjectHandler") -> None:
        """
        Decode the object, reporting it to ``handler``.

        Args:
            handler: Receiver of the object callbacks

        Raises:
            ParseError: If the document is not well-formed FOXML
            ContentUnavailableError: If internal content cannot be resolved
            DigestMismatchError: If inline XML disagrees with its declared digest
        """
        if self._closed:
            raise ParseError(f"{self.source_name} has already been processed")

        try:
            handler.begin_object(self.object_info)
            handler.process_object_properties(self._read_properties())
            self._read_datastreams(handler)
        except Exception:
            logger.debug(f"Aborting {self.object_info.pid}")
            handler.abort_object(self.object_info)
            raise
        else:
            # Errors raised while completing propagate without an abort
            handler.complete_object(self.object_info)
        finally:
            self.close()

    # Structure

    def _read_root(self) -> tuple[ObjectInfo, bool]:
        event = self._next_structural()
        if event is None:
            raise ParseError(f"{self.source_name} contains no XML elements")
        if event.kind != START or event.name != _foxml("digitalObject"):
            raise ParseError(
                f"Expected foxml:digitalObject as root of {self.source_name}, found {event.name}"
            )
        attrs = self._attributes(event, ROOT_ATTRIBUTES)
        pid = attrs.get("PID")
        if not pid:
            raise ParseError(f"digitalObject in {self.source_name} has no PID")
        legacy = attrs.get("VERSION") != CURRENT_FOXML_VERSION
        if legacy:
            logger.debug(f"{pid} uses legacy FOXML (VERSION={attrs.get('VERSION')})")
        return ObjectInfo(pid=pid, fedora_uri=attrs.get("FEDORA_URI")), legacy

    def _read_properties(self) -> ObjectProperties:
        event = self._next_structural()
        if event is None or event.kind != START or event.name != _foxml("objectProperties"):
            raise ParseError(
                f"Expected foxml:objectProperties in {self.object_info.pid}, "
                f"found {event.name if event else 'end of document'}"
            )
        allowed = ("property", "extproperty") if self.legacy else ("property",)
        properties = []
        while True:
            event = self._next_structural()
            if event is None:
                raise ParseError(f"Unexpected end of document in {self.object_info.pid}")
            if event.kind == END and event.name == _foxml("objectProperties"):
                return ObjectProperties(properties)
            if event.kind == START and self._local(event) in allowed:
                attrs = self._attributes(event, ("NAME", "VALUE"))
                name = attrs.get("NAME", "")
                if self.legacy and name == RDF_TYPE:
                    name = DC_TYPE
                properties.append(ObjectProperty(name, attrs.get("VALUE", "")))
                self._expect_end(event.name)
            else:
                self._unexpected(event)

    def _read_datastreams(self, handler: "StreamingObjectHandler") -> None:
        current: DatastreamInfo | None = None
        while True:
            event = self._next_structural()
            if event is None:
                raise ParseError(f"Unexpected end of document in {self.object_info.pid}")

            if event.kind == START:
                local = self._local(event)
                if local == "datastream" and current is None:
                    current = self._datastream_info(event)
                elif local == "datastreamVersion" and current is not None:
                    handler.process_datastream_version(self._read_version(current, event))
                elif local == "disseminator" and current is None and self.legacy:
                    self._skip_element()
                    handler.process_disseminator()
                else:
                    self._unexpected(event)
            elif event.name == _foxml("datastream") and current is not None:
                current = None
            elif event.name == _foxml("digitalObject") and current is None:
                return
            else:
                self._unexpected(event)

    def _datastream_info(self, event: XmlEvent) -> DatastreamInfo:
        attrs = self._attributes(event, DATASTREAM_ATTRIBUTES)
        ds_id = attrs.get("ID")
        if not ds_id:
            raise ParseError(f"datastream without ID in {self.object_info.pid}")
        try:
            control_group = ControlGroup(attrs.get("CONTROL_GROUP", ""))
            state = DatastreamState(attrs.get("STATE", "A"))
        except ValueError as e:
            raise ParseError(f"Invalid datastream {ds_id} in {self.object_info.pid}: {e}") from e
        return DatastreamInfo(
            object_info=self.object_info,
            datastream_id=ds_id,
            control_group=control_group,
            state=state,
            fedora_uri=attrs.get("FEDORA_URI"),
            versionable=attrs.get("VERSIONABLE", "true").lower() == "true",
        )

    def _read_version(self, info: DatastreamInfo, event: XmlEvent) -> DatastreamVersion:
        attrs = self._attributes(event, VERSION_ATTRIBUTES)
        version_id = attrs.get("ID", "")
        where = f"{self.object_info.pid}/{version_id}"
        if not attrs.get("CREATED"):
            raise ParseError(f"datastreamVersion {where} has no CREATED date")
        try:
            size = int(attrs.get("SIZE", "-1"))
        except ValueError as e:
            raise ParseError(f"Invalid SIZE on {where}: {attrs['SIZE']}") from e

        digest = None
        content = None
        while True:
            child = self._next_structural()
            if child is None:
                raise ParseError(f"Unexpected end of document in {where}")
            if child.kind == END and child.name == _foxml("datastreamVersion"):
                break
            if child.kind != START:
                self._unexpected(child)
            local = self._local(child)
            if local in CONTENT_ELEMENTS and content is not None:
                raise ParseError(f"{where} has more than one content element")
            if local == "contentDigest":
                digest_attrs = self._attributes(child, ("TYPE", "DIGEST"))
                self._expect_end(child.name)
                digest = ContentDigest(digest_attrs.get("TYPE", ""), digest_attrs.get("DIGEST", ""))
            elif local == "xmlContent":
                content = MemoryContent(self._copy_inline_xml(where))
            elif local == "contentLocation":
                location = self._attributes(child, ("REF", "TYPE"))
                self._expect_end(child.name)
                content = self._locate(location.get("REF", ""), location.get("TYPE", ""), where)
            elif local == "binaryContent":
                content = FileContent(self._decode_binary(where))
            else:
                self._unexpected(child)

        if content is None:
            raise ParseError(f"{where} has no content")
        if info.control_group is ControlGroup.INLINE_XML:
            if isinstance(content, MemoryContent):
                self._validate_inline_digest(
                    content.data, digest, f"{self.object_info.pid} {info.datastream_id}"
                )
            # The declared digest covers the checksum form, not the stored bytes
            digest = None

        alt_ids = attrs.get("ALT_IDS", "").split()
        return DatastreamVersion(
            info=info,
            version_id=version_id,
            created=attrs["CREATED"],
            content=content,
            label=attrs.get("LABEL", ""),
            mime_type=attrs.get("MIMETYPE", ""),
            alt_ids=alt_ids,
            format_uri=attrs.get("FORMAT_URI") or None,
            size=size,
            content_digest=digest,
        )

    # Content representations

    def _copy_inline_xml(self, where: str) -> bytes:
        """
        The source text between the xmlContent tags.

        Fragments using prefixes declared outside xmlContent do not parse on
        their own; those are re-serialized with the declarations added.
        """
        writer = InlineXmlWriter(self.reader)
        while True:
            event = self._next()
            if event.kind == END and writer.depth == 0:
                if event.name != _foxml("xmlContent"):
                    self._unexpected(event)
                raw = self._fragments.pop()
                if raw is None:
                    raise ParseError(f"Cannot locate the inline XML of {where} in the source text")
                if writer.inherits_namespaces:
                    logger.debug(f"Declaring inherited namespaces on the inline XML of {where}")
                    return writer.getvalue()
                return raw
            if event.kind == START:
                writer.start(event)
            elif event.kind == END:
                writer.end()
            elif event.kind == TEXT:
                if writer.depth or event.text.strip():
                    writer.text(event.text)
            elif event.kind == COMMENT:
                writer.comment(event.text)
            elif event.kind == PI:
                writer.pi(event.name, event.text)

    def _validate_inline_digest(
        self, fragment: bytes, digest: ContentDigest | None, where: str
    ) -> None:
        if not (self.validate_checksums and digest and digest.digest.strip()):
            return
        algorithm = hashlib_name(digest.algorithm)
        if algorithm is None:
            logger.debug(f"Not validating {digest.algorithm} digest of {where}")
            return
        actual = hashlib.new(algorithm, inline_xml_checksum_form(fragment)).hexdigest()
        if actual != digest.digest.lower():
            raise DigestMismatchError(
                f"Inline XML {where} failed checksum validation. "
                f"Expected {digest.algorithm}: {digest.digest}; Actual: {actual}",
                recovery_hint="Disable checksum validation to migrate the content as stored",
            )

    def _locate(self, ref: str, location_type: str, where: str) -> ContentAccessor:
        if location_type == "INTERNAL_ID":
            if self.resolver is None:
                raise ContentUnavailableError(
                    f"{where} references internal content {ref} but no resolver is configured",
                    recovery_hint="Native FOXML needs --datastreams-dir",
                )
            return self.resolver.resolve(ref)
        if location_type == "URL":
            return URLContent(ref.replace(LOCAL_SERVER_TOKEN, self.local_server), self.fetcher)
        raise ParseError(f"Unknown contentLocation TYPE {location_type!r} on {where}")

    def _decode_binary(self, where: str) -> Path:
        if self._temp_dir is None:
            self._temp_dir = tempfile.TemporaryDirectory(prefix="foxflow-")
        fd, path = tempfile.mkstemp(dir=self._temp_dir.name, prefix="binary-", suffix=".bin")
        leftover = ""
        with os.fdopen(fd, "wb") as out:
            while True:
                event = self._next()
                if event.kind == TEXT:
                    chunk = leftover + "".join(event.text.split())
                    usable = len(chunk) - len(chunk) % 4
                    try:
                        out.write(base64.b64decode(chunk[:usable], validate=True))
                    except binascii.Error as e:
                        raise ParseError(f"Invalid base64 content in {where}: {e}") from e
                    leftover = chunk[usable:]
                elif event.kind == END and event.name == _foxml("binaryContent"):
                    break
                elif event.kind != COMMENT:
                    self._unexpected(event)
        if leftover:
            raise ParseError(f"Truncated base64 content in {where}")
        return Path(path)

    # Event helpers

    def _next(self) -> XmlEvent:
        event = self.reader.next()
        if event is None:
            raise ParseError(f"Unexpected end of document in {self.source_name}")
        return event

    def _next_structural(self) -> XmlEvent | None:
        """Next start or end event, skipping whitespace, comments and PIs."""
        while True:
            event = self.reader.next()
            if event is None or event.kind in (START, END):
                return event
            if event.kind == TEXT and event.text.strip():
                raise ParseError(
                    f"Unexpected character data {event.text.strip()[:40]!r} in {self.source_name}"
                )

    def _expect_end(self, name: str) -> None:
        event = self._next_structural()
        if event is None or event.kind != END or event.name != name:
            self._unexpected(event)

    def _skip_element(self) -> None:
        depth = 1
        while depth:
            event = self._next()
            if event.kind == START:
                depth += 1
            elif event.kind == END:
                depth -= 1

    def _local(self, event: XmlEvent) -> str:
        uri, local = split_name(event.name)
        if uri != FOXML_NS:
            self._unexpected(event)
        return local

    def _attributes(self, event: XmlEvent, expected: tuple[str, ...]) -> dict[str, str]:
        attrs = {}
        for name, value in event.attrib.items():
            _, local = split_name(name)
            if local in expected:
                attrs[local] = value
            else:
                logger.warning(
                    f"Unexpected attribute {name} on {split_name(event.name)[1]} "
                    f"in {self.source_name}"
                )
        return attrs

    def _unexpected(self, event: XmlEvent | None):
        if event is None:
            raise ParseError(f"Unexpected end of document in {self.source_name}")
        label = {START: "element", END: "end of element"}.get(event.kind, event.kind)
        raise ParseError(f"Unexpected {label} {event.name} in {self.source_name}")


def _foxml(local: str) -> str:
    return f"{{{FOXML_NS}}}{local}"
