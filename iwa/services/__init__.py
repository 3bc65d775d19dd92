# SPDX-License-Identifier: MIT
"""Application services for the iwa CLI.

Services implement publishing, releasing and the registry, coordinating
between the domain layer (core/) and storage (services/storage.py).
"""

from iwa.services.publisher import PublishOutcome, list_bundles, load_bundle, publish_bundle
from iwa.services.registry import ReleaseRegistry
from iwa.services.releaser import CancelToken, ReleaseOutcome, release, rollback
from iwa.services.storage import FileSystemStore, MemoryStore, ObjectStore

__all__ = [
    # publishing
    "PublishOutcome",
    "list_bundles",
    "load_bundle",
    "publish_bundle",
    # releasing
    "CancelToken",
    "ReleaseOutcome",
    "release",
    "rollback",
    # registry
    "ReleaseRegistry",
    # storage
    "FileSystemStore",
    "MemoryStore",
    "ObjectStore",
]
