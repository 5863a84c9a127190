"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Integration configuration models.

An integration config describes one service: its type, how to authenticate,
and for every resource the endpoints that read or write it. The models are
strict: unknown keys and endpoints without any path are rejected when the
config is loaded rather than deep inside URL building.
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from testrelay.exceptions import MalformedTemplateError
from testrelay.url_template import find_placeholders


class Direction(str, Enum):
    """Which side of a migration an integration plays."""

    SOURCE = "source"
    TARGET = "target"


class EndpointAction(str, Enum):
    """Actions an endpoint can perform on a resource."""

    INDEX = "index"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class IntegrationType(str, Enum):
    API = "api"
    JUNIT = "junit"
    JSON = "json"


VALID_SOURCE_TYPES = frozenset({IntegrationType.API, IntegrationType.JUNIT, IntegrationType.JSON})
VALID_TARGET_TYPES = frozenset({IntegrationType.API})

# Action inspected when ordering requests in each direction
DEFAULT_ACTIONS = {
    Direction.SOURCE: EndpointAction.INDEX,
    Direction.TARGET: EndpointAction.CREATE,
}


def _check_template(value: str | None) -> str | None:
    if value is None:
        return value
    try:
        find_placeholders(value)
    except MalformedTemplateError as e:
        raise ValueError(e.message) from e
    return value


class EndpointDefinition(BaseModel):
    """One action on a resource, described by its URL templates."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str | None = None
    bulk_path: str | None = None
    single_path: str | None = None
    data_key: str | None = None
    update_key: str | None = None
    payload_key: str | None = None
    required_keys: tuple[str, ...] = ()
    include_source: bool = False
    throttle: int | None = Field(default=None, gt=0)

    @field_validator("path", "bulk_path", "single_path")
    @classmethod
    def validate_template(cls, value: str | None) -> str | None:
        return _check_template(value)

    @model_validator(mode="after")
    def require_a_path(self):
        if self.path is None and self.bulk_path is None and self.single_path is None:
            raise ValueError("At least one of path, bulk_path, or single_path must be defined")
        return self

    @property
    def template(self) -> str:
        """The path inspected for dependencies: path, then bulk_path, then single_path."""
        return self.path or self.bulk_path or self.single_path or ""


class ResourceConfig(BaseModel):
    """Endpoints and field mapping of a single resource."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoints: dict[EndpointAction, EndpointDefinition] = Field(default_factory=dict)
    mapping: dict[str, str] = Field(default_factory=dict)
    target_type: str | None = None
    collect_custom_fields: bool = False

    def endpoint(self, action: EndpointAction | str) -> EndpointDefinition | None:
        return self.endpoints.get(EndpointAction(action))


class MultiTargetConfig(BaseModel):
    """A single bulk endpoint that accepts records of several resources at once."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str
    data_key: str | None = None
    include_source: bool = False

    @field_validator("path")
    @classmethod
    def validate_template(cls, value: str) -> str:
        return _check_template(value)


class AuthLocation(str, Enum):
    HEADER = "header"
    QUERY = "query"
    BODY = "body"


class AuthConfig(BaseModel):
    """Auth declaration of an integration; credentials are supplied separately."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    location: AuthLocation | None = None
    key: str | None = None
    payload: str | None = None


class _IntegrationBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    base_path: str = ""
    auth: AuthConfig | None = None
    requests_per_second: float | None = Field(default=None, gt=0)


class ApiIntegrationConfig(_IntegrationBase):
    """A REST service read from and/or written to through configured endpoints."""

    type: Literal["api"] = "api"
    denormalized_keys: dict[str, dict[str, dict[str, str]]] = Field(default_factory=dict)
    multi_target: MultiTargetConfig | None = None
    source: dict[str, ResourceConfig] = Field(default_factory=dict)
    target: dict[str, ResourceConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_api(self):
        if self.auth is None:
            raise ValueError(f"API integration '{self.name}' must declare an auth type")

        for endpoint, prerequisites in self.denormalized_keys.items():
            if endpoint not in self.source:
                raise ValueError(f"denormalized_keys references unknown source resource '{endpoint}'")
            for prerequisite, matches in prerequisites.items():
                for placeholder in matches:
                    if "." not in placeholder:
                        raise ValueError(
                            f"denormalized key '{placeholder}' for '{endpoint}.{prerequisite}' "
                            "must have the form '<resource>.<field>'"
                        )
        return self

    def resources(self, direction: Direction | str) -> dict[str, ResourceConfig]:
        return self.source if Direction(direction) == Direction.SOURCE else self.target


class FileIntegrationConfig(_IntegrationBase):
    """Common shape of file-backed sources."""

    file_path: str | None = None

    def resources(self, direction: Direction | str) -> dict[str, ResourceConfig]:
        return {}


class JUnitIntegrationConfig(FileIntegrationConfig):
    type: Literal["junit"] = "junit"


class JsonIntegrationConfig(FileIntegrationConfig):
    type: Literal["json"] = "json"


IntegrationConfig = Annotated[
    ApiIntegrationConfig | JUnitIntegrationConfig | JsonIntegrationConfig,
    Field(discriminator="type"),
]

AnyIntegrationConfig = ApiIntegrationConfig | JUnitIntegrationConfig | JsonIntegrationConfig

_integration_adapter: TypeAdapter[Any] = TypeAdapter(IntegrationConfig)


def parse_integration_config(data: dict[str, Any]) -> AnyIntegrationConfig:
    """Validate a raw integration config mapping; raises pydantic.ValidationError."""
    return _integration_adapter.validate_python(data)


class SourceControlInfo(BaseModel):
    """Repository details stamped onto pushed payloads."""

    model_config = ConfigDict(frozen=True)

    repo: str | None = None
    branch: str | None = None
    sha: str | None = None

    def is_empty(self) -> bool:
        return not (self.repo or self.branch or self.sha)

    def as_payload(self) -> dict[str, str | None]:
        return {"repo": self.repo, "branch": self.branch, "sha": self.sha}
