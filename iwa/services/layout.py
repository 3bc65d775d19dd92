"""Storage key layout.

    bundles/{version}/{path}        permabundle objects (immutable)
    manifests/{version}.json        bundle manifest, written last
    environments/{env}/index.html   environment document (no-store)

Bundle objects are served at {base_url}/{version}/{path}.
"""

from __future__ import annotations

import re

from iwa.core.result import Err, Ok, Result
from iwa.services.errors import InvalidInput

BUNDLES_PREFIX = "bundles/"
MANIFESTS_PREFIX = "manifests/"
ENVIRONMENTS_PREFIX = "environments/"
DOCUMENT_NAME = "index.html"

_ENV_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")


def bundle_key(version: str, path: str) -> str:
    return f"{BUNDLES_PREFIX}{version}/{path}"


def manifest_key(version: str) -> str:
    return f"{MANIFESTS_PREFIX}{version}.json"


def document_key(environment: str) -> str:
    return f"{ENVIRONMENTS_PREFIX}{environment}/{DOCUMENT_NAME}"


def bundle_lock_name(version: str) -> str:
    return f"bundle-{version}"


def environment_lock_name(environment: str) -> str:
    return f"env-{environment}"


def validate_environment_name(name: str) -> Result[str, InvalidInput]:
    if not _ENV_RE.match(name):
        return Err(
            InvalidInput(
                message=f"invalid environment name: {name!r}",
                hint="Use lowercase letters, digits, '-' or '_' (e.g. prod, staging, qa-2)",
            )
        )
    return Ok(name)
