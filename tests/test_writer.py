# ABOUTME: Tests for the archive group writer end to end from FOXML to OCFL storage
# ABOUTME: Checks headers, content, digests, external handling, deletions and relationships

import hashlib
import io

import pytest
from rdflib import Graph, Literal, URIRef
from rdflib.namespace import DCTERMS

from conftest import (
    AUDIT,
    DC,
    DS1,
    DS2,
    DS3,
    DS4,
    EXAMPLE_PROPERTIES,
    MANAGED_BYTES,
    MANAGED_MD5,
    build_foxml,
)
from foxflow.exceptions import DigestMismatchError, StorageCommitError
from foxflow.ocfl import rdf
from foxflow.ocfl.headers import ExternalHandling, InteractionModel, ResourceHeaders
from foxflow.ocfl.writer import digest_urn, extension_for_mime_type
from foxflow.utils import parse_legacy_date

OBJECT_ID = "info:fedora/example:1"
MIGRATION_TIME = "2024-05-01T12:00:00.000Z"

RELS_EXT = """<foxml:datastream ID="RELS-EXT" STATE="A" CONTROL_GROUP="X" VERSIONABLE="true">
<foxml:datastreamVersion ID="RELS-EXT.0" LABEL="Relationships" CREATED="2015-01-27T19:30:00.000Z" MIMETYPE="application/rdf+xml">
<foxml:xmlContent>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns:rel="info:fedora/fedora-system:def/relations-external#">
<rdf:Description rdf:about="info:fedora/example:1">
<rel:isMemberOf rdf:resource="info:fedora/example:collection"/>
</rdf:Description>
</rdf:RDF>
</foxml:xmlContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""

RELS_INT = """<foxml:datastream ID="RELS-INT" STATE="A" CONTROL_GROUP="X" VERSIONABLE="true">
<foxml:datastreamVersion ID="RELS-INT.0" LABEL="Internal relationships" CREATED="2015-01-27T19:31:00.000Z" MIMETYPE="application/rdf+xml">
<foxml:xmlContent>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns:fedora-model="info:fedora/fedora-system:def/model#">
<rdf:Description rdf:about="info:fedora/example:1/DS2">
<fedora-model:downloadFilename>picture.jpg</fedora-model:downloadFilename>
</rdf:Description>
</rdf:RDF>
</foxml:xmlContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""


class StubFetcher:
    def __init__(self):
        self.urls = []

    def fetch(self, url):
        self.urls.append(url)
        return io.BytesIO(f"fetched {url}".encode())


def headers(repository, path, version=None, object_id=OBJECT_ID) -> ResourceHeaders:
    return ResourceHeaders.from_json_bytes(repository.read_file(object_id, path, version))


def graph(repository, path, version=None) -> Graph:
    g = Graph()
    g.parse(data=repository.read_file(OBJECT_ID, path, version).decode("utf-8"), format="nt")
    return g


class TestArchiveGroup:
    """Test migration of the example object"""

    def test_one_version_per_timeline_entry(self, migrate, repository, example_foxml):
        assert migrate(example_foxml) == OBJECT_ID

        inventory = repository.read_inventory(OBJECT_ID)
        assert repository.list_versions(OBJECT_ID) == ["v1", "v2", "v3", "v4", "v5", "v6"]
        assert inventory["versions"]["v1"]["created"] == "2015-01-27T19:07:33.120Z"
        assert inventory["versions"]["v6"]["created"] == "2015-01-27T19:20:40.678Z"
        assert inventory["versions"]["v1"]["user"]["address"] == "info:fedora/fedoraAdmin"
        assert inventory["versions"]["v1"]["message"] == "Generated by foxflow"

    def test_first_version_contents(self, migrate, repository, example_foxml):
        migrate(example_foxml)

        assert set(repository.logical_state(OBJECT_ID, "v1")) == {
            ".fcrepo/fcr-root.json",
            "fcr-container.nt",
            ".fcrepo/AUDIT.json",
            "AUDIT",
            ".fcrepo/AUDIT~fcr-desc.json",
            "AUDIT~fcr-desc.nt",
            ".fcrepo/DC.json",
            "DC",
            ".fcrepo/DC~fcr-desc.json",
            "DC~fcr-desc.nt",
        }

    def test_root_headers(self, migrate, repository, example_foxml):
        migrate(example_foxml)
        root = headers(repository, ".fcrepo/fcr-root.json")

        assert root.id == OBJECT_ID
        assert root.parent == "info:fedora"
        assert root.interaction_model is InteractionModel.BASIC_CONTAINER
        assert root.archival_group is True
        assert root.object_root is True
        assert root.state_token == "DDA5F658B9A14E8FC0D023609749CF32"
        assert root.created_date == MIGRATION_TIME
        assert root.last_modified_date == MIGRATION_TIME
        assert root.created_by == "fedoraAdmin"
        assert root.content_path == "fcr-container.nt"

    def test_root_triples(self, migrate, repository, example_foxml):
        migrate(example_foxml)
        g = graph(repository, "fcr-container.nt")
        subject = URIRef(OBJECT_ID)

        label = URIRef("info:fedora/fedora-system:def/model#label")
        assert g.value(subject, label) == Literal("This is an example object.")
        created = g.value(subject, URIRef("info:fedora/fedora-system:def/model#createdDate"))
        assert parse_legacy_date(str(created)) == parse_legacy_date("2015-01-27T19:07:33.120Z")
        assert len(g) == 5

    def test_managed_round_trip(self, migrate, repository, example_foxml):
        """Stored bytes equal the source and the recorded digest matches them"""
        migrate(example_foxml)

        stored = repository.read_file(OBJECT_ID, "DS2")
        ds2 = headers(repository, ".fcrepo/DS2.json")
        assert stored == MANAGED_BYTES
        assert ds2.digests == [f"urn:md5:{hashlib.md5(stored).hexdigest()}"]
        assert ds2.digests == [f"urn:md5:{MANAGED_MD5}"]
        assert ds2.content_size == 32

    def test_binary_headers(self, migrate, repository, example_foxml):
        migrate(example_foxml)
        ds2 = headers(repository, ".fcrepo/DS2.json")

        assert ds2.id == f"{OBJECT_ID}/DS2"
        assert ds2.parent == OBJECT_ID
        assert ds2.archival_group_id == OBJECT_ID
        assert ds2.interaction_model is InteractionModel.NON_RDF_SOURCE
        assert ds2.mime_type == "image/jpeg"
        assert ds2.filename == "DS2"
        assert ds2.state_token == "07B0E806D8057F9DA1423ADAE8DC4A20"
        assert ds2.content_path == "DS2"
        assert ds2.created_date == MIGRATION_TIME
        assert ds2.last_modified_by == "fedoraAdmin"
        assert ds2.external_handling is None
        assert ds2.archival_group is False

    def test_description_headers(self, migrate, repository, example_foxml):
        migrate(example_foxml)
        desc = headers(repository, ".fcrepo/DS2~fcr-desc.json")

        assert desc.id == f"{OBJECT_ID}/DS2/fcr:metadata"
        assert desc.parent == f"{OBJECT_ID}/DS2"
        assert desc.interaction_model is InteractionModel.NON_RDF_SOURCE_DESCRIPTION
        assert desc.state_token == "07B0E806D8057F9DA1423ADAE8DC4A20"
        assert desc.content_path == "DS2~fcr-desc.nt"

    def test_description_triples(self, migrate, repository, example_foxml):
        migrate(example_foxml)
        g = graph(repository, "DS1~fcr-desc.nt")
        subject = URIRef(f"{OBJECT_ID}/DS1")

        assert g.value(subject, DCTERMS.identifier) == Literal("DS1")
        assert g.value(subject, DCTERMS.title) == Literal("Example inline XML datastream")
        assert g.value(subject, rdf.OBJ_STATE) == Literal("A")
        assert g.value(subject, rdf.HAS_MIME_TYPE) == Literal("text/xml")
        assert g.value(subject, rdf.FORMAT_DESIGNATION) == Literal("format:uri")
        assert g.value(subject, rdf.HAS_SIZE) is None

    def test_inline_versions(self, migrate, repository, example_foxml):
        """Each version of an inline datastream is kept in its own object version"""
        migrate(example_foxml)

        assert (
            repository.read_file(OBJECT_ID, "DS1", "v2") == b"\n<test>This is a test.</test>\n"
        )
        assert (
            repository.read_file(OBJECT_ID, "DS1")
            == b"\n<test>This is a test that was edited.</test>\n"
        )
        ds1 = headers(repository, ".fcrepo/DS1.json")
        content = repository.read_file(OBJECT_ID, "DS1")
        assert ds1.digests == [f"urn:sha-512:{hashlib.sha512(content).hexdigest()}"]

    def test_redirect_and_external(self, migrate, repository, example_foxml):
        """Unimported URL content is recorded in headers only"""
        migrate(example_foxml)
        state = repository.logical_state(OBJECT_ID)

        ds3 = headers(repository, ".fcrepo/DS3.json")
        assert ds3.external_handling is ExternalHandling.REDIRECT
        assert ds3.external_url == "http://localhost:8080/fedora/describe"
        assert ds3.content_size is None
        ds4 = headers(repository, ".fcrepo/DS4.json")
        assert ds4.external_handling is ExternalHandling.PROXY
        assert ds4.external_url == "http://localhost:8080/fedora"
        assert "DS3" not in state
        assert "DS4" not in state
        assert "DS4~fcr-desc.nt" in state

    def test_import_external(self, migrate, repository, config):
        config.import_external = True
        fetcher = StubFetcher()
        migrate(build_foxml(DS3, DS4), fetcher=fetcher)

        assert fetcher.urls == ["http://localhost:8080/fedora"]
        assert repository.read_file(OBJECT_ID, "DS4") == b"fetched http://localhost:8080/fedora"
        assert headers(repository, ".fcrepo/DS4.json").external_handling is None
        assert headers(repository, ".fcrepo/DS3.json").external_handling is ExternalHandling.REDIRECT


class TestDigests:
    """Test digest validation"""

    def test_mismatch_commits_nothing(self, migrate, repository, config):
        bad = DS2.replace(MANAGED_MD5, "0" * 32)

        with pytest.raises(DigestMismatchError) as exc_info:
            migrate(build_foxml(DC, DS1, bad))

        assert "expected MD5" in str(exc_info.value)
        assert not repository.contains_object(OBJECT_ID)
        assert list(config.staging_dir.iterdir()) == []

    def test_validation_disabled(self, migrate, repository, config):
        config.validate_checksums = False
        migrate(build_foxml(DS2.replace(MANAGED_MD5, "0" * 32)))

        ds2 = headers(repository, ".fcrepo/DS2.json")
        assert ds2.digests == [f"urn:md5:{MANAGED_MD5}"]

    def test_digest_urn(self):
        assert digest_urn("md5", "ABC") == "urn:md5:abc"
        assert digest_urn("sha1", "abc") == "urn:sha-1:abc"
        assert digest_urn("sha512", "abc") == "urn:sha-512:abc"


class TestNamingOptions:
    """Test datastream naming and description options"""

    def test_extensions(self, migrate, repository, config, example_foxml):
        config.add_datastream_extensions = True
        migrate(example_foxml)

        state = repository.logical_state(OBJECT_ID)
        assert "DS2.jpg" in state
        assert "DS1.xml" in state
        assert ".fcrepo/DS2.jpg~fcr-desc.json" in state
        ds2 = headers(repository, ".fcrepo/DS2.jpg.json")
        assert ds2.id == f"{OBJECT_ID}/DS2.jpg"
        assert ds2.filename == "DS2.jpg"

    def test_extension_for_mime_type(self):
        assert extension_for_mime_type("image/jpeg") == "jpg"
        assert extension_for_mime_type("text/xml; charset=UTF-8") == "xml"
        assert extension_for_mime_type("application/x-unknown-thing") == ""

    def test_rich_descriptions(self, migrate, repository, config, example_foxml):
        config.rich_descriptions = True
        migrate(example_foxml)
        g = graph(repository, "DS2~fcr-desc.nt")
        subject = URIRef(f"{OBJECT_ID}/DS2")

        assert int(g.value(subject, rdf.HAS_SIZE)) == 32
        assert g.value(subject, rdf.HAS_MESSAGE_DIGEST) == URIRef(f"urn:md5:{MANAGED_MD5}")
        created = parse_legacy_date("2015-01-27T19:09:18.112Z")
        assert parse_legacy_date(str(g.value(subject, rdf.CREATED))) == created
        assert parse_legacy_date(str(g.value(subject, rdf.LAST_MODIFIED))) == created

    def test_custom_id_prefix(self, migrate, repository, config):
        config.id_prefix = "http://localhost:8080/rest/"
        assert migrate(build_foxml(DC)) == "http://localhost:8080/rest/example:1"
        assert repository.contains_object("http://localhost:8080/rest/example:1")


class TestObjectLifecycle:
    """Test objects without datastreams, deletions and repeated migration"""

    def test_object_without_datastreams(self, migrate, repository):
        """Properties-only objects get one root-only version"""
        migrate(build_foxml())

        inventory = repository.read_inventory(OBJECT_ID)
        assert list(inventory["versions"]) == ["v1"]
        assert inventory["versions"]["v1"]["created"] == "2015-01-27T20:26:16.998Z"
        assert set(repository.logical_state(OBJECT_ID)) == {
            ".fcrepo/fcr-root.json",
            "fcr-container.nt",
        }

    def test_deleted_datastream(self, migrate, repository):
        deleted = DS2.replace('STATE="A"', 'STATE="D"')
        migrate(build_foxml(DC, deleted))

        assert repository.list_versions(OBJECT_ID) == ["v1", "v2", "v3"]
        state = repository.logical_state(OBJECT_ID)
        assert "DS2" not in state
        assert "DS2~fcr-desc.nt" not in state
        assert headers(repository, ".fcrepo/DS2.json").deleted is True
        assert headers(repository, ".fcrepo/DS2~fcr-desc.json").deleted is True
        assert repository.read_file(OBJECT_ID, "DS2", "v2") == MANAGED_BYTES
        assert "DC" in state

    def test_inactive_kept_by_default(self, migrate, repository):
        migrate(build_foxml(DC, DS2.replace('STATE="A"', 'STATE="I"')))

        assert repository.list_versions(OBJECT_ID) == ["v1", "v2"]
        assert "DS2" in repository.logical_state(OBJECT_ID)

    def test_inactive_deleted_when_configured(self, migrate, repository, config):
        config.delete_inactive = True
        migrate(build_foxml(DC, DS2.replace('STATE="A"', 'STATE="I"')))

        assert repository.list_versions(OBJECT_ID) == ["v1", "v2", "v3"]
        assert "DS2" not in repository.logical_state(OBJECT_ID)

    def test_deleted_object(self, migrate, repository):
        properties = EXAMPLE_PROPERTIES.replace('VALUE="Active"', 'VALUE="Deleted"')
        migrate(build_foxml(DC, properties=properties))

        state = repository.logical_state(OBJECT_ID)
        assert repository.list_versions(OBJECT_ID) == ["v1", "v2"]
        assert "fcr-container.nt" not in state
        assert "DC" not in state
        assert headers(repository, ".fcrepo/fcr-root.json").deleted is True
        assert headers(repository, ".fcrepo/DC.json").deleted is True

    def test_existing_object_rejected(self, migrate, repository):
        migrate(build_foxml(DC))

        with pytest.raises(StorageCommitError):
            migrate(build_foxml(DC))
        assert repository.list_versions(OBJECT_ID) == ["v1"]


class TestRelationships:
    """Test RELS-EXT and RELS-INT handling"""

    def test_rels_ext_on_root(self, migrate, repository):
        migrate(build_foxml(DC, RELS_EXT))
        g = graph(repository, "fcr-container.nt")

        member_of = URIRef("info:fedora/fedora-system:def/relations-external#isMemberOf")
        assert g.value(URIRef(OBJECT_ID), member_of) == URIRef("info:fedora/example:collection")
        assert "RELS-EXT" in repository.logical_state(OBJECT_ID)

    def test_rels_int_download_filename(self, migrate, repository):
        migrate(build_foxml(DS2, RELS_INT))

        assert headers(repository, ".fcrepo/DS2.json", "v1").filename == "DS2"
        assert headers(repository, ".fcrepo/DS2.json").filename == "picture.jpg"
        g = graph(repository, "DS2~fcr-desc.nt")
        assert g.value(URIRef(f"{OBJECT_ID}/DS2"), rdf.DOWNLOAD_FILENAME) == Literal("picture.jpg")
