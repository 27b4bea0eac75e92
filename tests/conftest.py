# ABOUTME: Shared pytest fixtures for foxflow tests
# ABOUTME: Provides FOXML builders for the example:1 object, configs and storage roots

import hashlib
from datetime import datetime, timezone

import pytest

from foxflow.config import MigrationConfig
from foxflow.handlers import ObjectAbstractionHandler, VersionAbstractionHandler
from foxflow.foxml.decoder import FoxmlDecoder
from foxflow.ocfl.store import OcflRepository
from foxflow.ocfl.writer import ArchiveGroupWriter

MANAGED_BYTES = b"Example managed binary content.\n"
MANAGED_BASE64 = "RXhhbXBsZSBtYW5hZ2VkIGJpbmFyeSBjb250ZW50Lgo="
MANAGED_MD5 = "41ba57b20e629759617c741ac1f87136"

# The DC fragment as its SHA-1 was computed: declaration first, lines trimmed and joined
DC_CHECKSUM_FORM = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<oai_dc:dc xmlns:oai_dc="http://www.openarchives.org/OAI/2.0/oai_dc/" '
    b'xmlns:dc="http://purl.org/dc/elements/1.1/" '
    b'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    b'xsi:schemaLocation="http://www.openarchives.org/OAI/2.0/oai_dc/ '
    b'http://www.openarchives.org/OAI/2.0/oai_dc.xsd">'
    b"<dc:title>This is an example object.</dc:title>"
    b"<dc:identifier>example:1</dc:identifier>"
    b"</oai_dc:dc>"
)
DC_SHA1 = hashlib.sha1(DC_CHECKSUM_FORM).hexdigest()

EXAMPLE_PROPERTIES = """<foxml:objectProperties>
<foxml:property NAME="info:fedora/fedora-system:def/model#state" VALUE="Active"/>
<foxml:property NAME="info:fedora/fedora-system:def/model#label" VALUE="This is an example object."/>
<foxml:property NAME="info:fedora/fedora-system:def/model#ownerId" VALUE="exampleOwner"/>
<foxml:property NAME="info:fedora/fedora-system:def/model#createdDate" VALUE="2015-01-27T19:07:33.120Z"/>
<foxml:property NAME="info:fedora/fedora-system:def/view#lastModifiedDate" VALUE="2015-01-27T20:26:16.998Z"/>
</foxml:objectProperties>
"""

AUDIT = """<foxml:datastream ID="AUDIT" STATE="A" CONTROL_GROUP="X" VERSIONABLE="false">
<foxml:datastreamVersion ID="AUDIT.0" LABEL="Audit Trail for this object" CREATED="2015-01-27T19:07:33.120Z" MIMETYPE="text/xml" FORMAT_URI="info:fedora/fedora-system:format/xml.fedora.audit">
<foxml:xmlContent>
<audit:auditTrail xmlns:audit="info:fedora/fedora-system:def/audit#">
<audit:record ID="AUDREC1">
<audit:process type="Fedora API-M"/>
<audit:action>addDatastream</audit:action>
<audit:componentID>DS1</audit:componentID>
<audit:responsibility>fedoraAdmin</audit:responsibility>
<audit:date>2015-01-27T19:08:43.701Z</audit:date>
</audit:record>
</audit:auditTrail>
</foxml:xmlContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""

DC = f"""<foxml:datastream ID="DC" STATE="A" CONTROL_GROUP="X" VERSIONABLE="true">
<foxml:datastreamVersion ID="DC1.0" LABEL="Dublin Core Record for this object" CREATED="2015-01-27T19:07:33.120Z" MIMETYPE="text/xml" FORMAT_URI="http://www.openarchives.org/OAI/2.0/oai_dc/" SIZE="341">
<foxml:contentDigest TYPE="SHA-1" DIGEST="{DC_SHA1}"/>
<foxml:xmlContent>
<oai_dc:dc xmlns:oai_dc="http://www.openarchives.org/OAI/2.0/oai_dc/" xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xsi:schemaLocation="http://www.openarchives.org/OAI/2.0/oai_dc/ http://www.openarchives.org/OAI/2.0/oai_dc.xsd">
  <dc:title>This is an example object.</dc:title>
  <dc:identifier>example:1</dc:identifier>
</oai_dc:dc>
</foxml:xmlContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""

DS1 = """<foxml:datastream ID="DS1" STATE="A" CONTROL_GROUP="X" VERSIONABLE="true">
<foxml:datastreamVersion ID="DS1.0" LABEL="Example inline XML datastream" CREATED="2015-01-27T19:08:43.701Z" MIMETYPE="text/xml" ALT_IDS="alternate_id" FORMAT_URI="format:uri" SIZE="34">
<foxml:xmlContent>
<test>This is a test.</test>
</foxml:xmlContent>
</foxml:datastreamVersion>
<foxml:datastreamVersion ID="DS1.1" LABEL="Example inline XML datastream" CREATED="2015-01-27T19:20:40.678Z" MIMETYPE="text/xml" ALT_IDS="alternate_id" FORMAT_URI="format:uri" SIZE="50">
<foxml:xmlContent>
<test>This is a test that was edited.</test>
</foxml:xmlContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""

DS2 = f"""<foxml:datastream ID="DS2" STATE="A" CONTROL_GROUP="M" VERSIONABLE="true">
<foxml:datastreamVersion ID="DS2.0" LABEL="Example Managed Datastream" CREATED="2015-01-27T19:09:18.112Z" MIMETYPE="image/jpeg" SIZE="32">
<foxml:contentDigest TYPE="MD5" DIGEST="{MANAGED_MD5}"/>
<foxml:binaryContent>
{MANAGED_BASE64}
</foxml:binaryContent>
</foxml:datastreamVersion>
</foxml:datastream>
"""

DS3 = """<foxml:datastream ID="DS3" STATE="A" CONTROL_GROUP="R" VERSIONABLE="true">
<foxml:datastreamVersion ID="DS3.0" LABEL="Example Redirect Datastream" CREATED="2015-01-27T19:14:05.948Z" MIMETYPE="text/html">
<foxml:contentLocation TYPE="URL" REF="http://local.fedora.server/fedora/describe"/>
</foxml:datastreamVersion>
</foxml:datastream>
"""

DS4 = """<foxml:datastream ID="DS4" STATE="A" CONTROL_GROUP="E" VERSIONABLE="true">
<foxml:datastreamVersion ID="DS4.0" LABEL="Example External Datastream" CREATED="2015-01-27T19:14:38.999Z" MIMETYPE="text/html">
<foxml:contentLocation TYPE="URL" REF="http://local.fedora.server/fedora"/>
</foxml:datastreamVersion>
</foxml:datastream>
"""


def build_foxml(
    *datastreams: str,
    pid: str = "example:1",
    version: str | None = "1.1",
    properties: str = EXAMPLE_PROPERTIES,
) -> bytes:
    """Assemble a FOXML document from datastream blocks."""
    version_attr = f' VERSION="{version}"' if version else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<foxml:digitalObject{version_attr} PID="{pid}" FEDORA_URI="info:fedora/{pid}"\n'
        '  xmlns:foxml="info:fedora/fedora-system:def/foxml#"\n'
        '  xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"\n'
        '  xsi:schemaLocation="info:fedora/fedora-system:def/foxml# '
        'http://www.fedora.info/definitions/1/0/foxml1-1.xsd">\n'
        + properties
        + "".join(datastreams)
        + "</foxml:digitalObject>\n"
    ).encode("utf-8")


class RecordingHandler:
    """Records decoder callbacks, reading content while it is still available."""

    def __init__(self):
        self.events = []
        self.object_info = None
        self.properties = None
        self.versions = []
        self.contents = {}
        self.disseminators = 0

    def begin_object(self, object_info):
        self.events.append("begin")
        self.object_info = object_info

    def process_object_properties(self, properties):
        self.events.append("properties")
        self.properties = properties

    def process_datastream_version(self, version):
        self.events.append(f"version:{version.version_id}")
        self.versions.append(version)
        if version.info.control_group.value in ("M", "X"):
            with version.open() as stream:
                self.contents[version.version_id] = stream.read()

    def process_disseminator(self):
        self.events.append("disseminator")
        self.disseminators += 1

    def complete_object(self, object_info):
        self.events.append("complete")

    def abort_object(self, object_info):
        self.events.append("abort")

    def version(self, version_id):
        return next(v for v in self.versions if v.version_id == version_id)


@pytest.fixture
def example_foxml():
    """The example:1 object with inline, managed, redirect and external datastreams."""
    return build_foxml(AUDIT, DC, DS1, DS2, DS3, DS4)


@pytest.fixture
def decode():
    """Decode FOXML bytes into a RecordingHandler."""
    import io

    def _decode(foxml: bytes, **kwargs) -> RecordingHandler:
        handler = RecordingHandler()
        with FoxmlDecoder(io.BytesIO(foxml), **kwargs) as decoder:
            decoder.process(handler)
        return handler

    return _decode


@pytest.fixture
def config(tmp_path):
    """Migration config writing under tmp_path with a fixed migration time."""
    return MigrationConfig(
        target_dir=str(tmp_path / "target"),
        user="fedoraAdmin",
        user_uri="info:fedora/fedoraAdmin",
        migration_time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def repository(config):
    return OcflRepository(
        config.storage_dir,
        staging_root=config.staging_dir,
        digest_algorithm=config.digest_algorithm,
        author_name=config.user,
        author_address=config.user_uri,
        version_message=config.version_message,
    )


@pytest.fixture
def migrate(repository, config):
    """Run FOXML bytes through decoder, reconstructor and archive writer."""
    import io

    def _migrate(foxml: bytes, **decoder_kwargs) -> str:
        writer = ArchiveGroupWriter(repository, config)
        handler = ObjectAbstractionHandler(VersionAbstractionHandler(writer))
        with FoxmlDecoder(io.BytesIO(foxml), **decoder_kwargs) as decoder:
            decoder.process(handler)
            return config.id_prefix + decoder.object_info.pid

    return _migrate
