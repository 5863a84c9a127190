"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Loading of integration configs, credentials and per-run options.

Everything needed to talk to one side of a migration is resolved up front
into an :class:`EndpointContext`. Any problem found here is a
:class:`ConfigurationError`, raised before a single request is sent.
"""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pydantic

from testrelay.auth import AuthOptions, build_auth_options
from testrelay.core.logging import get_logger
from testrelay.dependency_graph import resolve_fetch_order
from testrelay.exceptions import ConfigurationError
from testrelay.models import (
    DEFAULT_ACTIONS,
    VALID_SOURCE_TYPES,
    VALID_TARGET_TYPES,
    AnyIntegrationConfig,
    ApiIntegrationConfig,
    Direction,
    IntegrationType,
    ResourceConfig,
    SourceControlInfo,
    parse_integration_config,
)
from testrelay.url_template import find_placeholders

logger = get_logger("testrelay.config_loader")

PACKAGED_CONFIG_DIR = Path(__file__).parent / "configs"

DEFAULT_THROTTLE_CAP = 2


def _read_json(path: Path, what: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid {what} in {path}: {e}", context={"path": str(path)}) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {what} {path}: {e}", context={"path": str(path)}) from e


def resolve_config_path(name: str, search_dir: Path | None = None) -> Path:
    """
    Find the config file of a named integration.

    A path to an existing file is used as given; otherwise ``<name>.json`` is
    looked up in ``search_dir`` (the working directory by default) and then
    among the packaged configs.
    """
    search_dir = Path(search_dir) if search_dir is not None else Path.cwd()
    candidates = [
        Path(name),
        search_dir / name,
        search_dir / f"{name}.json",
        PACKAGED_CONFIG_DIR / f"{name}.json",
    ]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ConfigurationError(f"Integration config not found: {name}", context={"integration": name})


def load_integration_config(integration: str, search_dir: Path | None = None) -> AnyIntegrationConfig:
    """
    Load and validate an integration config.

    ``type:path`` names a file-backed source directly, such as
    ``junit:reports/results.xml``. Anything else is resolved with
    :func:`resolve_config_path`.

    Raises:
        ConfigurationError: If the config cannot be found, read or validated.
    """
    parts = integration.split(":")
    if len(parts) > 1 and not Path(integration).exists():
        if len(parts) > 2:
            raise ConfigurationError(f"Invalid local file integration [{integration}]")
        integration_type, file_path = parts
        raw: dict[str, Any] = {"name": integration_type, "type": integration_type, "file_path": file_path}
        source_desc = integration
    else:
        path = resolve_config_path(integration, search_dir)
        raw = _read_json(path, "integration config")
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Integration config {path} must be a JSON object")
        source_desc = str(path)

    if not raw.get("type"):
        raise ConfigurationError(f"Missing 'type' for [{integration}]")

    try:
        config = parse_integration_config(raw)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Invalid integration config for [{integration}]: {e}",
            context={"source": source_desc, "errors": e.error_count()},
        ) from e

    logger.debug(
        f"Loaded integration config '{config.name}' ({config.type})", context={"source": source_desc}
    )
    return config


def credentials_env_key(integration: str, direction: Direction | str) -> str:
    return f"{integration.upper()}_{Direction(direction).value.upper()}_CREDENTIALS"


def load_credentials(
    integration: str,
    direction: Direction | str,
    credentials: Mapping[str, Any] | str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Resolve the credentials of one integration and direction.

    Args:
        integration: Integration name used as the credentials key
        direction: Source or target
        credentials: ``{integration: {direction: {...}}}`` as a mapping or a JSON
            file path. When omitted the ``{INTEGRATION}_{DIRECTION}_CREDENTIALS``
            environment variable, holding ``{direction: {...}}``, is read.
        environ: Environment to read, defaults to ``os.environ``

    Raises:
        ConfigurationError: If no credentials are found or ``base_url`` is missing.
    """
    direction = Direction(direction)

    if credentials is not None:
        if isinstance(credentials, (str, Path)):
            credentials = _read_json(Path(credentials), "credentials file")
        if not isinstance(credentials, Mapping):
            raise ConfigurationError("Credentials must be a JSON object")
        creds = (credentials.get(integration) or {}).get(direction.value)
    else:
        environ = os.environ if environ is None else environ
        env_key = credentials_env_key(integration, direction)
        env_value = environ.get(env_key)
        if not env_value:
            raise ConfigurationError(
                f"Issue reading {integration} credentials: environment variable {env_key} not found",
                context={"env_key": env_key},
            )
        try:
            env_creds = json.loads(env_value)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Environment variable {env_key} is not valid credentials JSON") from e
        creds = env_creds.get(direction.value) if isinstance(env_creds, dict) else None

    if not isinstance(creds, Mapping) or not creds:
        raise ConfigurationError(f"Credentials missing for [{integration} - {direction.value}]")
    if not creds.get("base_url"):
        raise ConfigurationError(f"Credentials for [{integration} - {direction.value}] must include base_url")
    return dict(creds)


def load_ignore_config(ignore: Mapping[str, Any] | str | Path | None) -> dict[str, dict[str, list[str]]]:
    """
    Load ``{resource: {field: [regex, ...]}}`` ignore rules.

    Raises:
        ConfigurationError: If the file is missing, unreadable or badly shaped.
    """
    if ignore is None:
        return {}
    if isinstance(ignore, (str, Path)):
        path = Path(ignore)
        if not path.is_file():
            raise ConfigurationError(f"Ignore config not found: {path}")
        ignore = _read_json(path, "ignore config")

    if not isinstance(ignore, Mapping):
        raise ConfigurationError("Ignore config must be a JSON object")
    for resource, fields in ignore.items():
        if not isinstance(fields, Mapping) or not all(isinstance(p, list) for p in fields.values()):
            raise ConfigurationError(f"Ignore rules for '{resource}' must map fields to lists of patterns")
    return {resource: dict(fields) for resource, fields in ignore.items()}


def parse_overrides(overrides: Mapping[str, Any] | str | None) -> dict[str, dict[str, Any]]:
    """Parse ``{resource|multi_target: {field: value}}`` overrides from JSON text or a mapping."""
    if not overrides:
        return {}
    if isinstance(overrides, str):
        try:
            overrides = json.loads(overrides)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid overrides JSON: {e}") from e
    if not isinstance(overrides, Mapping) or not all(isinstance(v, Mapping) for v in overrides.values()):
        raise ConfigurationError("Overrides must map resource names to objects")
    return {key: dict(value) for key, value in overrides.items()}


def read_git_info(root: Path | str = ".", no_git: bool = False) -> SourceControlInfo:
    """
    Read repository url, branch and latest commit from a ``.git`` directory.

    Missing files leave the matching field unset.
    """
    if no_git:
        return SourceControlInfo()

    git_dir = Path(root) / ".git"
    config_file = git_dir / "config"
    if not config_file.is_file():
        logger.debug(f"Git config not found under {git_dir}")
        return SourceControlInfo()

    repo = None
    for line in config_file.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped.startswith("url"):
            repo = stripped.split("=", 1)[-1].strip()
            break

    branch = None
    head_file = git_dir / "HEAD"
    if head_file.is_file():
        head = head_file.read_text(encoding="utf-8").strip()
        branch = head.split("refs/heads/")[-1] or None

    sha = None
    log_file = git_dir / "logs" / "HEAD"
    if log_file.is_file():
        lines = log_file.read_text(encoding="utf-8").strip().splitlines()
        if lines:
            fields = lines[-1].split()
            # Each reflog line is "<old-sha> <new-sha> ..."
            sha = fields[1] if len(fields) > 1 else fields[0]

    return SourceControlInfo(repo=repo, branch=branch, sha=sha)


def throttle_settings(requests_per_second: float | None) -> tuple[int, float]:
    """Translate ``requests_per_second`` into a (starts, interval seconds) window."""
    if requests_per_second is None:
        return DEFAULT_THROTTLE_CAP, 1.0
    if requests_per_second >= 1:
        return int(requests_per_second), 1.0
    return 1, 1.0 / requests_per_second


@dataclass
class EndpointContext:
    """Resolved settings for one integration playing one direction of a migration."""

    direction: Direction
    integration: str
    config: AnyIntegrationConfig
    base_url: str = ""
    auth: AuthOptions | None = None
    throttle_cap: int = DEFAULT_THROTTLE_CAP
    throttle_interval: float = 1.0
    endpoint_set: list[str] = field(default_factory=list)
    ignore_config: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    overrides: dict[str, dict[str, Any]] = field(default_factory=dict)
    source_control: SourceControlInfo = field(default_factory=SourceControlInfo)
    path_values: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def type(self) -> IntegrationType:
        return IntegrationType(self.config.type)

    @property
    def resources(self) -> dict[str, ResourceConfig]:
        return self.config.resources(self.direction)

    @property
    def is_api(self) -> bool:
        return isinstance(self.config, ApiIntegrationConfig)

    def resource(self, name: str) -> ResourceConfig | None:
        return self.resources.get(name)


def _select_resources(
    config: ApiIntegrationConfig,
    integration: str,
    direction: Direction,
    data_types: list[str] | None,
) -> list[str]:
    resources = config.resources(direction)
    if not data_types:
        return list(resources)

    selected = []
    for data_type in data_types:
        if data_type in resources:
            selected.append(data_type)
        else:
            logger.warning(f"Invalid data type [{data_type}] for [{integration}]. Ignoring.")
    return selected


def _record_field_placeholders(config: ApiIntegrationConfig) -> set[str]:
    """Dotless target placeholders that name no resource; pushed records fill them."""
    fields = set()
    for resource_config in config.target.values():
        for endpoint in resource_config.endpoints.values():
            for placeholder in find_placeholders(endpoint.template):
                if "." not in placeholder and placeholder not in config.target:
                    fields.add(placeholder)
    return fields


def build_endpoint_context(
    integration: str,
    direction: Direction | str,
    credentials: Mapping[str, Any] | str | Path | None = None,
    ignore: Mapping[str, Any] | str | Path | None = None,
    overrides: Mapping[str, Any] | str | None = None,
    data_types: list[str] | None = None,
    no_git: bool = False,
    search_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
    git_root: Path | str = ".",
) -> EndpointContext:
    """
    Resolve everything needed to pull from or push to one integration.

    Raises:
        ConfigurationError: For an unusable config, type, credentials or data type selection.
    """
    direction = Direction(direction)
    config = load_integration_config(integration, search_dir)
    integration_type = IntegrationType(config.type)

    valid_types = VALID_SOURCE_TYPES if direction == Direction.SOURCE else VALID_TARGET_TYPES
    if integration_type not in valid_types:
        raise ConfigurationError(
            f"Invalid {direction.value} type: {integration_type.value}",
            context={"integration": integration},
        )

    context = EndpointContext(
        direction=direction,
        integration=integration,
        config=config,
        ignore_config=load_ignore_config(ignore),
        overrides=parse_overrides(overrides),
        source_control=read_git_info(git_root, no_git),
    )

    if not isinstance(config, ApiIntegrationConfig):
        return context

    creds_name = Path(integration).stem if integration.endswith(".json") else integration
    creds = load_credentials(creds_name, direction, credentials, environ)
    context.base_url = creds["base_url"]
    # Plain credential fields such as a workspace handle can fill path placeholders
    context.path_values = {
        key: value for key, value in creds.items() if key != "base_url" and isinstance(value, (str, int))
    }
    context.auth = build_auth_options(config.auth, creds)
    context.throttle_cap, context.throttle_interval = throttle_settings(config.requests_per_second)

    requested = _select_resources(config, integration, direction, data_types)
    # Credential fields fill placeholders that no resource provides; overrides only reach pushed records
    supplied = set(context.path_values)
    if direction == Direction.TARGET:
        supplied |= {name for fields in context.overrides.values() for name in fields}
        supplied |= _record_field_placeholders(config)
    context.endpoint_set = resolve_fetch_order(
        config.resources(direction), requested, DEFAULT_ACTIONS[direction], supplied
    )
    if not context.endpoint_set:
        raise ConfigurationError(f"No valid data types provided for [{integration}]")

    logger.info(
        f"Prepared {direction.value} '{config.name}'",
        context={"endpoints": context.endpoint_set, "throttle_cap": context.throttle_cap},
    )
    return context


def build_pipe_contexts(
    sources: str | list[str],
    targets: str | list[str],
    **options: Any,
) -> tuple[list[EndpointContext], list[EndpointContext]]:
    """Build contexts for comma-separated source and target integration lists."""
    if isinstance(sources, str):
        sources = [name.strip() for name in sources.split(",") if name.strip()]
    if isinstance(targets, str):
        targets = [name.strip() for name in targets.split(",") if name.strip()]
    if not sources:
        raise ConfigurationError("At least one source integration is required")
    return (
        [build_endpoint_context(name, Direction.SOURCE, **options) for name in sources],
        [build_endpoint_context(name, Direction.TARGET, **options) for name in targets],
    )
