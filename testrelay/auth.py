"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Authentication schemes for outbound requests.

An integration names its auth type; the credentials for a direction supply
the scheme's inputs. Together they resolve into :class:`AuthOptions`, which
every request applies as a header, a query parameter or a body field.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from testrelay.exceptions import AuthenticationError, MissingSubstitutionValues
from testrelay.models import AuthConfig, AuthLocation
from testrelay.url_template import substitute_strict


@dataclass(frozen=True)
class AuthScheme:
    inputs: tuple[str, ...]
    location: AuthLocation
    key: str
    payload: str


AUTH_SCHEMAS: dict[str, AuthScheme] = {
    "basic": AuthScheme(
        inputs=("base64Credentials",),
        location=AuthLocation.HEADER,
        key="Authorization",
        payload="Basic {base64Credentials}",
    ),
    "bearer": AuthScheme(
        inputs=("token",),
        location=AuthLocation.HEADER,
        key="Authorization",
        payload="Bearer {token}",
    ),
}


@dataclass(frozen=True)
class AuthOptions:
    """Resolved auth for one integration and direction."""

    type: str
    location: AuthLocation
    key: str
    payload: str

    def apply(
        self,
        headers: dict[str, str],
        params: dict[str, Any],
        body: Any = None,
    ) -> None:
        """Place the auth payload where the scheme expects it."""
        if self.location == AuthLocation.HEADER:
            headers[self.key] = self.payload
        elif self.location == AuthLocation.QUERY:
            params[self.key] = self.payload
        elif isinstance(body, dict):
            body[self.key] = self.payload

    def __repr__(self) -> str:
        return f"AuthOptions(type={self.type!r}, location={self.location.value!r}, key={self.key!r})"


def build_auth_options(auth: AuthConfig | str, credentials: Mapping[str, Any]) -> AuthOptions:
    """
    Resolve an auth declaration and credentials into request auth.

    Location, key and payload declared on the integration override the
    scheme defaults.

    Raises:
        AuthenticationError: For an unknown auth type or a missing credential input.
    """
    config = AuthConfig(type=auth) if isinstance(auth, str) else auth
    scheme = AUTH_SCHEMAS.get(config.type)
    if scheme is None:
        raise AuthenticationError(
            f"Invalid auth type: {config.type}", context={"supported": sorted(AUTH_SCHEMAS)}
        )

    missing = [name for name in scheme.inputs if not credentials.get(name)]
    if missing:
        raise AuthenticationError(
            f"Invalid credentials: missing input {', '.join(missing)}",
            context={"auth_type": config.type, "missing": missing},
        )

    template = config.payload or scheme.payload
    try:
        payload = substitute_strict(template, {name: credentials[name] for name in scheme.inputs})
    except MissingSubstitutionValues as e:
        raise AuthenticationError(
            f"Auth payload for '{config.type}' references unknown inputs: {', '.join(e.missing)}"
        ) from e

    return AuthOptions(
        type=config.type,
        location=config.location or scheme.location,
        key=config.key or scheme.key,
        payload=payload,
    )
