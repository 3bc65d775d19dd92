"""Environment-content policy for permabundles.

A permabundle must run unchanged in every environment, so it must not embed
values that belong to one environment (API hosts, keys, feature flags).
The check looks for literal needles, configured per project, in text assets.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from iwa.core.config import DEFAULT_MAX_SCAN_BYTES, DEFAULT_SCAN_SUFFIXES, PolicyConfig
from iwa.services.errors import PolicyViolation

__all__ = ["EnvPolicy", "scan_files", "validate_env_var_names"]

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True, slots=True)
class EnvPolicy:
    forbidden: tuple[str, ...] = ()
    scan_suffixes: tuple[str, ...] = DEFAULT_SCAN_SUFFIXES
    max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES

    @classmethod
    def from_config(cls, config: PolicyConfig) -> EnvPolicy:
        return cls(
            forbidden=config.forbidden,
            scan_suffixes=config.scan_suffixes,
            max_scan_bytes=config.max_scan_bytes,
        )

    def applies_to(self, path: str) -> bool:
        lowered = path.lower()
        return any(lowered.endswith(s.lower()) for s in self.scan_suffixes)


def _scan_text(rel: str, text: str, needles: tuple[str, ...]) -> list[PolicyViolation]:
    found: list[PolicyViolation] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        for needle in needles:
            if needle in line:
                found.append(PolicyViolation(path=rel, needle=needle, line=lineno))
    return found


def scan_files(
    files: Iterable[tuple[Path, str]],
    policy: EnvPolicy,
) -> tuple[PolicyViolation, ...]:
    """Scan (absolute path, bundle path) pairs for forbidden needles.

    Binary files, non-matching suffixes and files over max_scan_bytes are
    skipped. Raises OSError if a file cannot be read.
    """
    if not policy.forbidden:
        return ()

    violations: list[PolicyViolation] = []
    for src, rel in files:
        if not policy.applies_to(rel):
            continue
        if src.stat().st_size > policy.max_scan_bytes:
            continue
        raw = src.read_bytes()
        if b"\0" in raw:
            continue
        text = raw.decode("utf-8", errors="replace")
        violations.extend(_scan_text(rel, text, policy.forbidden))
    return tuple(violations)


def validate_env_var_names(names: Iterable[str]) -> tuple[tuple[str, ...], list[str]]:
    """Return (unique names in order, problems)."""
    seen: list[str] = []
    problems: list[str] = []
    for name in names:
        if not _ENV_NAME_RE.match(name):
            problems.append(f"invalid environment variable name: {name!r}")
            continue
        if name in seen:
            problems.append(f"duplicate environment variable name: {name}")
            continue
        seen.append(name)
    return tuple(seen), problems
