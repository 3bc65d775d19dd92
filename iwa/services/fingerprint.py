"""Bundle fingerprints and version identifiers.

A bundle's fingerprint is SHA-256 over its sorted `path NUL sha256` lines,
so it depends only on file names and bytes, never on build time or order on
disk. The content-addressed version identifier is the first 16 hex chars.
"""

from __future__ import annotations

import hashlib
import mimetypes
import re
from collections.abc import Iterable
from pathlib import Path

from iwa.core.result import Err, Ok, Result
from iwa.platform.files import sha256_file
from iwa.services.errors import InvalidInput
from iwa.services.model import BundleFile

__all__ = [
    "VERSION_ID_LENGTH",
    "collect_bundle_files",
    "compute_fingerprint",
    "content_type_for",
    "order_files",
    "validate_bundle_path",
    "validate_version_tag",
    "version_from_fingerprint",
]

VERSION_ID_LENGTH = 16

_TAG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")

_EXTRA_TYPES = {
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".css": "text/css",
    ".map": "application/json",
    ".json": "application/json",
    ".svg": "image/svg+xml",
    ".woff2": "font/woff2",
    ".wasm": "application/wasm",
}


def content_type_for(path: str) -> str:
    suffix = Path(path).suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def validate_version_tag(tag: str) -> Result[str, InvalidInput]:
    if not _TAG_RE.match(tag):
        return Err(
            InvalidInput(
                message=f"invalid version tag: {tag!r}",
                hint="Use 1-64 chars of letters, digits, '.', '_' or '-', e.g. v1.4.0",
            )
        )
    if tag in (".", "..") or tag.startswith(".iwa-"):
        return Err(InvalidInput(message=f"reserved version tag: {tag!r}"))
    return Ok(tag)


def validate_bundle_path(path: str) -> str | None:
    """Return why path cannot be stored in a bundle, or None."""
    if not path or path.startswith("/") or "\\" in path:
        return "must be a relative POSIX path"
    parts = path.split("/")
    if any(p in ("", ".", "..") for p in parts):
        return "must not contain empty, '.' or '..' segments"
    return None


def collect_bundle_files(
    source_dir: Path,
    *,
    include_hidden: bool = False,
    include_source_maps: bool = True,
) -> Result[tuple[tuple[Path, BundleFile], ...], InvalidInput]:
    """Walk a build output directory.

    Returns (absolute path, BundleFile) pairs sorted by bundle path.
    """
    if not source_dir.is_dir():
        return Err(InvalidInput(message=f"not a directory: {source_dir}"))

    out: list[tuple[Path, BundleFile]] = []
    for p in sorted(source_dir.rglob("*")):
        if p.is_dir():
            continue
        rel = p.relative_to(source_dir).as_posix()
        if not include_hidden and any(part.startswith(".") for part in rel.split("/")):
            continue
        if not include_source_maps and rel.endswith(".map"):
            continue
        try:
            sha = sha256_file(p)
            size = p.stat().st_size
        except OSError as e:
            return Err(InvalidInput(message=f"cannot read {p}: {e}"))
        out.append(
            (p, BundleFile(path=rel, sha256=sha, size=size, content_type=content_type_for(rel)))
        )

    if not out:
        return Err(InvalidInput(message=f"no files to publish in {source_dir}"))
    out.sort(key=lambda item: item[1].path)
    return Ok(tuple(out))


def order_files(
    files: tuple[tuple[Path, BundleFile], ...], entries: Iterable[str]
) -> Result[tuple[tuple[Path, BundleFile], ...], InvalidInput]:
    """Move the named entries to the front, in the given order."""
    wanted = tuple(entries)
    by_path = {f.path: (src, f) for src, f in files}
    unknown = [p for p in wanted if p not in by_path]
    if unknown:
        return Err(
            InvalidInput(
                message=f"load order names files not in the bundle: {', '.join(unknown)}",
                hint="Entries are paths relative to the build directory, e.g. assets/runtime.js",
            )
        )
    if len(set(wanted)) != len(wanted):
        return Err(InvalidInput(message="load order lists a file more than once"))

    first = set(wanted)
    rest = tuple(item for item in files if item[1].path not in first)
    return Ok(tuple(by_path[p] for p in wanted) + rest)


def compute_fingerprint(files: Iterable[BundleFile]) -> str:
    h = hashlib.sha256()
    for f in sorted(files, key=lambda f: f.path):
        h.update(f.path.encode("utf-8"))
        h.update(b"\0")
        h.update(f.sha256.encode("ascii"))
        h.update(b"\n")
    return h.hexdigest()


def version_from_fingerprint(fingerprint: str) -> str:
    return fingerprint[:VERSION_ID_LENGTH]
