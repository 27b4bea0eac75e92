# ABOUTME: Pydantic model for the JSON resource headers stored beside content
# ABOUTME: Defines interaction models, external handling and header serialization

import json
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InteractionModel(str, Enum):
    """Resource kinds of the destination repository."""
    BASIC_CONTAINER = "http://www.w3.org/ns/ldp#BasicContainer"
    NON_RDF_SOURCE = "http://www.w3.org/ns/ldp#NonRDFSource"
    NON_RDF_SOURCE_DESCRIPTION = "http://fedora.info/definitions/v4/repository#NonRdfSourceDescription"


class ExternalHandling(str, Enum):
    PROXY = "proxy"
    REDIRECT = "redirect"


class ResourceHeaders(BaseModel):
    """Server-managed properties of one resource in an archive group."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    parent: str
    archival_group_id: str | None = None
    state_token: str | None = None
    interaction_model: InteractionModel
    mime_type: str | None = None
    filename: str | None = None
    content_size: int | None = Field(None, ge=0)
    digests: list[str] = Field(default_factory=list)
    external_url: str | None = None
    external_handling: ExternalHandling | None = None
    created_date: str | None = None
    created_by: str | None = None
    last_modified_date: str | None = None
    last_modified_by: str | None = None
    archival_group: bool = False
    object_root: bool = False
    deleted: bool = False
    content_path: str | None = None
    headers_version: str = "1.0"

    def to_json_bytes(self) -> bytes:
        """Serialize with sorted keys so identical headers give identical bytes."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return (json.dumps(data, indent=2, sort_keys=True) + "\n").encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> "ResourceHeaders":
        return cls.model_validate_json(data)
