from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Literal

from iwa.core.structured import StrDict, as_obj_list, as_str_dict, get_int, get_str, get_str_list

VarValue = str | int | float | bool
Variables = dict[str, VarValue]

ReleaseState = Literal["pending", "active", "superseded"]
ReleaseKind = Literal["release", "rollback"]

MANIFEST_SCHEMA = 1
RECORD_SCHEMA = 1


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True, slots=True)
class BundleFile:
    path: str  # POSIX, relative to the bundle root
    sha256: str
    size: int
    content_type: str


@dataclass(frozen=True, slots=True)
class Bundle:
    """A published permabundle. Never mutated once its manifest exists.

    `files` is in load order: the `entries` named at publish time first, in
    that order, then every other file by path.
    """

    version: str
    fingerprint: str
    files: tuple[BundleFile, ...]
    env_var_names: tuple[str, ...]
    published_at: datetime
    entries: tuple[str, ...] = ()

    def to_dict(self) -> StrDict:
        return {
            "schema": MANIFEST_SCHEMA,
            "version": self.version,
            "fingerprint": self.fingerprint,
            "published_at": format_timestamp(self.published_at),
            "env_var_names": list(self.env_var_names),
            "entries": list(self.entries),
            "files": [
                {
                    "path": f.path,
                    "sha256": f.sha256,
                    "size": f.size,
                    "content_type": f.content_type,
                }
                for f in self.files
            ],
        }

    @classmethod
    def from_dict(cls, data: StrDict) -> Bundle:
        if get_int(data, "schema") != MANIFEST_SCHEMA:
            raise ValueError(f"unsupported manifest schema: {data.get('schema')!r}")
        version = get_str(data, "version")
        fingerprint = get_str(data, "fingerprint")
        published = get_str(data, "published_at")
        files_obj = as_obj_list(data.get("files"))
        if version is None or fingerprint is None or published is None or files_obj is None:
            raise ValueError("manifest is missing version, fingerprint, published_at or files")

        files: list[BundleFile] = []
        for item in files_obj:
            d = as_str_dict(item)
            if d is None:
                raise ValueError("manifest file entry must be an object")
            path = get_str(d, "path")
            sha = get_str(d, "sha256")
            size = get_int(d, "size")
            if path is None or sha is None or size is None:
                raise ValueError("manifest file entry is incomplete")
            files.append(
                BundleFile(
                    path=path,
                    sha256=sha,
                    size=size,
                    content_type=get_str(d, "content_type") or "application/octet-stream",
                )
            )

        return cls(
            version=version,
            fingerprint=fingerprint,
            files=tuple(files),
            env_var_names=get_str_list(data, "env_var_names") or (),
            published_at=parse_timestamp(published),
            entries=get_str_list(data, "entries") or (),
        )


@dataclass(frozen=True, slots=True)
class EnvironmentDocument:
    environment: str
    bundle_version: str
    asset_urls: tuple[str, ...]
    variables: Variables
    generated_at: datetime
    html: str


@dataclass(frozen=True, slots=True)
class ReleaseRecord:
    """One entry in an environment's release history.

    The stored form omits `state`; it is derived from the active pointer when
    the record is read back.
    """

    environment: str
    seq: int
    bundle_version: str
    variables: Variables
    released_at: datetime
    kind: ReleaseKind = "release"
    supersedes: int | None = None
    state: ReleaseState = "pending"

    @property
    def record_id(self) -> str:
        return f"{self.environment}#{self.seq}"

    def with_state(self, state: ReleaseState) -> ReleaseRecord:
        return replace(self, state=state)

    def to_dict(self) -> StrDict:
        return {
            "schema": RECORD_SCHEMA,
            "environment": self.environment,
            "seq": self.seq,
            "bundle_version": self.bundle_version,
            "variables": dict(self.variables),
            "released_at": format_timestamp(self.released_at),
            "kind": self.kind,
            "supersedes": self.supersedes,
        }

    @classmethod
    def from_dict(cls, data: StrDict, *, state: ReleaseState) -> ReleaseRecord:
        if get_int(data, "schema") != RECORD_SCHEMA:
            raise ValueError(f"unsupported record schema: {data.get('schema')!r}")
        environment = get_str(data, "environment")
        seq = get_int(data, "seq")
        version = get_str(data, "bundle_version")
        released = get_str(data, "released_at")
        variables = as_str_dict(data.get("variables"))
        if environment is None or seq is None or version is None or released is None:
            raise ValueError("record is missing environment, seq, bundle_version or released_at")
        if variables is None:
            raise ValueError("record variables must be an object")

        kind = get_str(data, "kind") or "release"
        if kind not in ("release", "rollback"):
            raise ValueError(f"invalid record kind: {kind!r}")

        return cls(
            environment=environment,
            seq=seq,
            bundle_version=version,
            variables={k: v for k, v in variables.items() if isinstance(v, (str, int, float))},
            released_at=parse_timestamp(released),
            kind=kind,
            supersedes=get_int(data, "supersedes"),
            state=state,
        )
