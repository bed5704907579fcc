"""Upstream credential lookup.

The bearer token comes either from an explicit override (CODEX_UPSTREAM_BEARER)
or from the Codex CLI's ``auth.json``. The document layout is not fixed
(single profile, nested profiles, lists of accounts), so the file is searched
depth-first for the first usable token field.

Only the locator of the matched entry (``$.profile.nested.api_key``) is ever
reported; the token itself must not reach logs or error messages.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any

# Field names recognized as tokens, in priority order within one object
TOKEN_KEYS = ("token", "api_key", "apiKey", "access_token")

# Deeper branches are treated as "not found", not as an error
MAX_DEPTH = 32

OVERRIDE_LOCATOR = "env:CODEX_UPSTREAM_BEARER"


@dataclass(frozen=True)
class Credential:
    token: str = field(repr=False)
    locator: str


class CredentialError(Exception):
    """Base class for credential resolution failures."""


class CredentialFileNotFound(CredentialError, FileNotFoundError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Codex auth file not found: {path}")


class CredentialParseError(CredentialError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Codex auth file is not valid JSON: {path} ({reason})")


class CredentialUnreadable(CredentialError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Codex auth file cannot be read: {path} ({reason})")


class CredentialNotFound(CredentialError):
    def __init__(self, path: str, attempted_keys: tuple[str, ...] = TOKEN_KEYS):
        self.path = path
        self.attempted_keys = list(attempted_keys)
        super().__init__(
            f"No usable token found in {path}. "
            f"Expected one of: {', '.join(self.attempted_keys)}."
        )


def default_auth_path() -> str:
    """~/.codex/auth.json on every platform."""
    return os.path.join(os.path.expanduser("~"), ".codex", "auth.json")


def resolve_credential(token_override: str | None, path: str) -> Credential:
    """Return the upstream credential, preferring a directly supplied token."""
    if token_override and token_override.strip():
        return Credential(token=token_override.strip(), locator=OVERRIDE_LOCATOR)
    return load_credential_file(path)


def load_credential_file(path: str) -> Credential:
    if not os.path.isfile(path):
        raise CredentialFileNotFound(path)

    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise CredentialParseError(path, f"line {e.lineno} column {e.colno}: {e.msg}") from None
    except UnicodeDecodeError:
        raise CredentialParseError(path, "not UTF-8 text") from None
    except RecursionError:
        raise CredentialParseError(path, "nested too deeply") from None
    except FileNotFoundError:
        raise CredentialFileNotFound(path) from None
    except OSError as e:
        raise CredentialUnreadable(path, e.strerror or type(e).__name__) from None

    found = find_first_token(document)
    if found is None:
        raise CredentialNotFound(path)
    return found


def find_first_token(node: Any, locator: str = "$", depth: int = 0) -> Credential | None:
    """Depth-first search for the first token field, in document order.

    Within an object the recognized keys are checked before any child is
    visited, so a shallow match always beats a deeper one on the same branch.
    """
    if depth > MAX_DEPTH:
        return None

    if isinstance(node, dict):
        for key in TOKEN_KEYS:
            value = node.get(key)
            if isinstance(value, str) and value.strip():
                return Credential(token=value, locator=f"{locator}.{key}")

        for name, child in node.items():
            found = find_first_token(child, f"{locator}.{name}", depth + 1)
            if found is not None:
                return found
        return None

    if isinstance(node, list):
        for index, item in enumerate(node):
            found = find_first_token(item, f"{locator}[{index}]", depth + 1)
            if found is not None:
                return found
        return None

    return None
