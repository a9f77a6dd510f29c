from __future__ import annotations

import json
import re
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
TEMPLATE_FIELDS = frozenset({"mount", "secret_path", "secret_key"})
DEFAULT_PATH_TEMPLATE = "vault-{mount}-{secret_path}"
DEFAULT_KEY_TEMPLATE = "vault-{mount}-{secret_path}-{secret_key}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DestinationType(str, Enum):
    AWS_SM = "aws-sm"
    AZURE_KV = "azure-kv"
    GCP_SM = "gcp-sm"
    IN_MEMORY = "in-memory"


class Granularity(str, Enum):
    SECRET_PATH = "secret-path"
    SECRET_KEY = "secret-key"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    UNSYNCED = "UNSYNCED"
    SYNC_FAILED = "SYNC_FAILED"


def _template_fields(template: str) -> set[str]:
    fields = set()
    for _, field, _, _ in string.Formatter().parse(template):
        if field is not None:
            fields.add(field)
    return fields


class Destination(BaseModel):
    """Common destination options; subclasses add provider credentials."""

    type: ClassVar[DestinationType]

    name: str
    secret_name_template: Optional[str] = None
    granularity: Granularity = Granularity.SECRET_PATH
    custom_tags: Dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid", "validate_assignment": True}

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not NAME_RE.match(v):
            raise ValueError(f"invalid destination name: {v!r}")
        return v

    @field_validator("secret_name_template")
    @classmethod
    def _check_template(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        unknown = _template_fields(v) - TEMPLATE_FIELDS
        if unknown:
            raise ValueError(f"unknown template fields: {sorted(unknown)}")
        return v

    @model_validator(mode="after")
    def _check_granularity(self) -> "Destination":
        if self.secret_name_template is None or self.granularity is not Granularity.SECRET_KEY:
            return self
        if "secret_key" not in _template_fields(self.secret_name_template):
            raise ValueError("secret-key granularity requires {secret_key} in the name template")
        return self

    @property
    def key(self) -> Tuple[DestinationType, str]:
        return (self.type, self.name)

    @property
    def effective_template(self) -> str:
        if self.secret_name_template is not None:
            return self.secret_name_template
        if self.granularity is Granularity.SECRET_KEY:
            return DEFAULT_KEY_TEMPLATE
        return DEFAULT_PATH_TEMPLATE

    def masked(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type.value}
        for field, value in self:
            if isinstance(value, SecretStr):
                out[field] = "***"
            elif isinstance(value, Enum):
                out[field] = value.value
            else:
                out[field] = value
        return out

    def revealed(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for field, value in self:
            if isinstance(value, SecretStr):
                out[field] = value.get_secret_value()
            elif isinstance(value, Enum):
                out[field] = value.value
            elif isinstance(value, dict):
                out[field] = dict(value)
            else:
                out[field] = value
        return out


class AwsSmDestination(Destination):
    type: ClassVar[DestinationType] = DestinationType.AWS_SM

    # unset keys fall back to the boto3 default credential chain
    access_key_id: Optional[SecretStr] = None
    secret_access_key: Optional[SecretStr] = None
    session_token: Optional[SecretStr] = None
    region: str = "us-east-1"

    @model_validator(mode="after")
    def _check_key_pair(self) -> "AwsSmDestination":
        if (self.access_key_id is None) != (self.secret_access_key is None):
            raise ValueError("access_key_id and secret_access_key must be set together")
        return self


class AzureKvDestination(Destination):
    type: ClassVar[DestinationType] = DestinationType.AZURE_KV

    key_vault_uri: str
    tenant_id: str
    client_id: str
    client_secret: SecretStr
    # purge after soft delete so the name can be reused
    purge_deleted: bool = True

    @field_validator("key_vault_uri")
    @classmethod
    def _check_uri(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("key_vault_uri must be an https URL")
        return v.rstrip("/")


class GcpSmDestination(Destination):
    type: ClassVar[DestinationType] = DestinationType.GCP_SM

    # service-account JSON; unset falls back to application default credentials
    credentials: Optional[SecretStr] = None
    project_id: Optional[str] = None

    @model_validator(mode="after")
    def _fill_project(self) -> "GcpSmDestination":
        if self.credentials is None:
            if self.project_id is None:
                raise ValueError("project_id is required without credentials")
            return self
        try:
            info = json.loads(self.credentials.get_secret_value())
        except ValueError as exc:
            raise ValueError("credentials must be a service-account JSON document") from exc
        if not isinstance(info, dict):
            raise ValueError("credentials must be a JSON object")
        if self.project_id is None:
            project = info.get("project_id")
            if not project:
                raise ValueError("project_id missing from credentials")
            object.__setattr__(self, "project_id", project)
        return self

    def credentials_info(self) -> Optional[Dict[str, Any]]:
        if self.credentials is None:
            return None
        return json.loads(self.credentials.get_secret_value())


class InMemoryDestination(Destination):
    type: ClassVar[DestinationType] = DestinationType.IN_MEMORY


DESTINATION_MODELS: Dict[DestinationType, type[Destination]] = {
    DestinationType.AWS_SM: AwsSmDestination,
    DestinationType.AZURE_KV: AzureKvDestination,
    DestinationType.GCP_SM: GcpSmDestination,
    DestinationType.IN_MEMORY: InMemoryDestination,
}


class VersionMetadata(BaseModel):
    version: int
    created_time: datetime
    deletion_time: Optional[datetime] = None
    destroyed: bool = False


class SecretMetadata(BaseModel):
    mount: str
    name: str
    current_version: int
    oldest_version: int
    max_versions: int = 0
    created_time: datetime
    updated_time: datetime
    versions: Dict[int, VersionMetadata] = Field(default_factory=dict)


AssociationKey = Tuple[DestinationType, str, str, Optional[str]]


class Association(BaseModel):
    destination_type: DestinationType
    destination_name: str
    mount: str
    # None associates every secret under the mount
    secret_name: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    updated_at: datetime = Field(default_factory=utcnow)
    last_error: Optional[str] = None
    # source secret name -> destination-side names produced for it
    remote_names: Dict[str, List[str]] = Field(default_factory=dict)
    # destination-side name -> digest of the pushed payload
    remote_digests: Dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> AssociationKey:
        return (self.destination_type, self.destination_name, self.mount, self.secret_name)

    def covers(self, mount: str, secret_name: str) -> bool:
        if mount != self.mount:
            return False
        return self.secret_name is None or self.secret_name == secret_name

    def mark(self, status: SyncStatus, error: Optional[str] = None) -> None:
        self.sync_status = status
        self.last_error = error
        self.updated_at = utcnow()


class MountSpec(BaseModel):
    path: str
    max_versions: int = 0


class SecretSpec(BaseModel):
    mount: str
    name: str
    data: Dict[str, Any]

    @model_validator(mode="after")
    def _coerce_values_to_str(self) -> "SecretSpec":
        # Accept any YAML scalar and coerce to string for storage
        self.data = {k: v if isinstance(v, str) else str(v) for k, v in self.data.items()}
        return self


class DestinationSpec(BaseModel):
    type: DestinationType
    name: str
    options: Dict[str, Any] = Field(default_factory=dict)


class AssociationSpec(BaseModel):
    type: DestinationType
    name: str
    mount: str
    secret_name: Optional[str] = None


class SyncConfig(BaseModel):
    mounts: List[MountSpec] = Field(default_factory=list)
    destinations: List[DestinationSpec] = Field(default_factory=list)
    secrets: List[SecretSpec] = Field(default_factory=list, alias="kv-secrets")
    associations: List[AssociationSpec] = Field(default_factory=list)

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def _check_references(self) -> "SyncConfig":
        declared = {(d.type, d.name) for d in self.destinations}
        for a in self.associations:
            if (a.type, a.name) not in declared:
                raise ValueError(f"association references undeclared destination {a.type.value}/{a.name}")
        return self
