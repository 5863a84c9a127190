"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
URL template helpers.

Endpoint paths in integration configs carry ``{placeholder}`` tokens such as
``/get_cases/{projects.id}``. The functions here locate and fill those tokens.
They are pure and never log; problems surface as configuration errors.
"""

import re
from collections.abc import Mapping
from typing import Any

from testrelay.exceptions import MalformedTemplateError, MissingSubstitutionValues

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


def find_placeholders(template: str) -> list[str]:
    """
    Return every ``{name}`` token of a template in order of appearance.

    Duplicates are kept; callers deduplicate where they need to.

    Raises:
        MalformedTemplateError: If a ``{`` has no closing ``}`` or braces nest.
    """
    keys: list[str] = []
    position = 0
    while True:
        start = template.find("{", position)
        if start < 0:
            break
        end = template.find("}", start + 1)
        if end < 0:
            raise MalformedTemplateError(
                f"Unmatched brackets in path '{template}'", context={"template": template}
            )
        name = template[start + 1 : end]
        if "{" in name or not name:
            raise MalformedTemplateError(
                f"Invalid placeholder in path '{template}'", context={"template": template}
            )
        keys.append(name)
        position = end + 1
    return keys


def substitute(template: str, values: Mapping[str, Any]) -> str:
    """
    Replace every placeholder that has a value; leave the others untouched.
    """
    find_placeholders(template)

    def replace(match: re.Match) -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return _PLACEHOLDER.sub(replace, template)


def substitute_strict(template: str, values: Mapping[str, Any]) -> str:
    """
    Replace every placeholder, failing if any of them has no value.

    Raises:
        MissingSubstitutionValues: Naming every missing placeholder at once.
    """
    placeholders = list(dict.fromkeys(find_placeholders(template)))
    missing = [name for name in placeholders if name not in values]
    if missing:
        raise MissingSubstitutionValues(template, missing)
    return substitute(template, values)


def join_url(base_url: str | None, base_path: str | None, path: str | None) -> str:
    """Concatenate the pieces of an endpoint URL the way integrations declare them."""
    return f"{base_url or ''}{base_path or ''}{path or ''}"
