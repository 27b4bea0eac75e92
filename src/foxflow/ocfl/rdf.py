# ABOUTME: RDF triples for container and binary descriptions, serialized as N-Triples
# ABOUTME: Builds object property, datastream and RELS-EXT/RELS-INT relationship triples

import logging

from rdflib import Graph, Literal, URIRef
from rdflib.namespace import DCTERMS, XSD

from foxflow.exceptions import ParseError
from foxflow.models import DatastreamVersion, ObjectProperties

logger = logging.getLogger(__name__)

PREMIS = "http://www.loc.gov/premis/rdf/v1#"
EBUCORE = "http://www.ebu.ch/metadata/ontologies/ebucore/ebucore#"
FEDORA = "http://fedora.info/definitions/v4/repository#"

OBJ_STATE = URIRef("http://fedora.info/definitions/1/0/access/objState")
FORMAT_DESIGNATION = URIRef(PREMIS + "formatDesignation")
HAS_MESSAGE_DIGEST = URIRef(PREMIS + "hasMessageDigest")
HAS_SIZE = URIRef(PREMIS + "hasSize")
HAS_MIME_TYPE = URIRef(EBUCORE + "hasMimeType")
CREATED = URIRef(FEDORA + "created")
LAST_MODIFIED = URIRef(FEDORA + "lastModified")
DOWNLOAD_FILENAME = URIRef("info:fedora/fedora-system:def/model#downloadFilename")

Triple = tuple[URIRef, URIRef, object]


def date_literal(value: str) -> Literal:
    # Keep the legacy lexical form; rdflib would otherwise normalize it
    return Literal(value, datatype=XSD.dateTime, normalize=False)


def property_triples(subject: str, properties: ObjectProperties) -> list[Triple]:
    """Object properties as triples; properties named like dates become xsd:dateTime."""
    node = URIRef(subject)
    triples = []
    for prop in properties:
        value = date_literal(prop.value) if "Date" in prop.name else Literal(prop.value)
        triples.append((node, URIRef(prop.name), value))
    return triples


def datastream_triples(
    subject: str,
    version: DatastreamVersion,
    mime_type: str,
    digest: str | None = None,
    created: str | None = None,
    size: int | None = None,
    rich: bool = False,
) -> list[Triple]:
    """
    Description of one datastream version.

    Args:
        subject: Resource id of the binary being described
        version: The datastream version
        mime_type: Resolved mime type of the binary
        digest: Digest URN of the stored content
        created: Creation date of the datastream's first version
        size: Size of the stored content in bytes
        rich: Also include digest, size and timestamps

    Returns:
        List of (subject, predicate, object) triples
    """
    node = URIRef(subject)
    triples = [
        (node, DCTERMS.identifier, Literal(version.datastream_id)),
        (node, DCTERMS.title, Literal(version.label)),
        (node, OBJ_STATE, Literal(version.info.state.value)),
        (node, HAS_MIME_TYPE, Literal(mime_type)),
    ]
    if version.format_uri:
        triples.append((node, FORMAT_DESIGNATION, Literal(version.format_uri)))
    if rich:
        if created:
            triples.append((node, CREATED, date_literal(created)))
        triples.append((node, LAST_MODIFIED, date_literal(version.created)))
        if size is not None and size > -1:
            triples.append((node, HAS_SIZE, Literal(size, datatype=XSD.long)))
        if digest:
            triples.append((node, HAS_MESSAGE_DIGEST, URIRef(digest)))
    return triples


def parse_relationships(data: bytes, source: str) -> list[Triple]:
    """
    Parse RELS-EXT or RELS-INT RDF/XML content.

    Raises:
        ParseError: If the content is not RDF/XML
    """
    graph = Graph()
    try:
        graph.parse(data=data, format="xml")
    except Exception as e:
        raise ParseError(f"Invalid RDF/XML in {source}: {e}") from e
    return list(graph)


def to_ntriples(triples: list[Triple]) -> bytes:
    """Serialize triples as N-Triples with lines sorted for stable output."""
    graph = Graph()
    for triple in triples:
        graph.add(triple)
    text = graph.serialize(format="nt")
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    lines = sorted(line for line in text.splitlines() if line.strip())
    return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""
