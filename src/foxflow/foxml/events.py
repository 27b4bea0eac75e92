# ABOUTME: Pull-style XML event reader built on lxml's incremental target parser
# ABOUTME: Feeds the input in chunks and hands out start/end/text events with namespace scope

import logging
from collections import deque
from collections.abc import Callable
from typing import BinaryIO, NamedTuple

from lxml import etree

from foxflow.exceptions import ParseError

logger = logging.getLogger(__name__)

START = "start"
END = "end"
TEXT = "text"
COMMENT = "comment"
PI = "pi"

READ_SIZE = 64 * 1024


class XmlEvent(NamedTuple):
    kind: str
    name: str | None = None
    attrib: dict[str, str] | None = None
    text: str | None = None
    # Namespace declarations made on this start tag, prefix -> uri ("" for default)
    declared: dict[str, str] | None = None


def split_name(name: str) -> tuple[str | None, str]:
    """Split a Clark name "{uri}local" into (uri, local)."""
    if name.startswith("{"):
        uri, _, local = name[1:].partition("}")
        return uri, local
    return None, name


class _EventCollector:
    """lxml parser target that queues events instead of building a tree."""

    def __init__(self):
        self.events: deque[XmlEvent] = deque()
        self._pending_ns: dict[str, str] = {}

    def start_ns(self, prefix, uri):
        self._pending_ns[prefix or ""] = uri

    def end_ns(self, prefix):
        pass

    def start(self, tag, attrib):
        self.events.append(XmlEvent(START, tag, dict(attrib), declared=self._pending_ns))
        self._pending_ns = {}

    def end(self, tag):
        self.events.append(XmlEvent(END, tag))

    def data(self, data):
        self.events.append(XmlEvent(TEXT, text=data))

    def comment(self, text):
        self.events.append(XmlEvent(COMMENT, text=text))

    def pi(self, target, data=None):
        self.events.append(XmlEvent(PI, target, text=data))

    def close(self):
        return None


class XmlEventReader:
    """
    Forward-only reader over an XML byte stream.

    Only as much input as needed to produce the next event is parsed, so
    large inline content arrives as a series of TEXT events rather than one
    string. ``tee`` receives every raw chunk just before the parser does.
    """

    def __init__(
        self,
        stream: BinaryIO,
        read_size: int = READ_SIZE,
        source_name: str = "<stream>",
        tee: Callable[[bytes], None] | None = None,
    ):
        self.stream = stream
        self.tee = tee
        self.read_size = read_size
        self.source_name = source_name
        self._collector = _EventCollector()
        self._parser = etree.XMLParser(
            target=self._collector,
            resolve_entities=False,
            no_network=True,
            huge_tree=True,
        )
        self._eof = False
        self._scopes: list[dict[str, str]] = [
            {"xml": "http://www.w3.org/XML/1998/namespace"}
        ]

    def next(self) -> XmlEvent | None:
        """Return the next event, or None once the document is exhausted."""
        while not self._collector.events:
            if self._eof:
                return None
            self._feed()

        event = self._collector.events.popleft()
        if event.kind == START:
            scope = dict(self._scopes[-1])
            scope.update(event.declared or {})
            self._scopes.append(scope)
        elif event.kind == END:
            self._scopes.pop()
        return event

    def _feed(self) -> None:
        try:
            chunk = self.stream.read(self.read_size)
            if chunk:
                if self.tee is not None:
                    self.tee(chunk)
                self._parser.feed(chunk)
            else:
                self._eof = True
                self._parser.close()
        except etree.XMLSyntaxError as e:
            raise ParseError(f"Malformed XML in {self.source_name}: {e}") from e

    @property
    def namespaces(self) -> dict[str, str]:
        """Prefix bindings in scope at the most recently returned event."""
        return self._scopes[-1]

    def prefix_for(self, uri: str) -> str | None:
        """Innermost prefix bound to ``uri``, preferring named prefixes."""
        candidates = [p for p, u in self.namespaces.items() if u == uri]
        if not candidates:
            return None
        named = [p for p in candidates if p]
        return named[-1] if named else ""

    def close(self) -> None:
        self.stream.close()
