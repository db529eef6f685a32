"""
Version specifier normalization.

Turns free-form input ("8.2", "latest", "21", "v20") into an ordered list
of candidate package identifiers for a runtime family. Normalization never
fails: input that matches no grammar is passed through unchanged so that
exact package names still work.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from .families import RuntimeFamily

NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)*$")
LEGACY_JAVA_RE = re.compile(r"^1\.(\d+)(?:\.\d+)*(?:_\d+)?$")


@dataclass(frozen=True)
class VersionSpec:
    """
    User input paired with the family it is resolved against.

    Attributes:
        family: Runtime family
        raw: Input exactly as typed
    """
    family: RuntimeFamily
    raw: str

    @property
    def cleaned(self) -> str:
        """Input stripped, lower-cased, with a leading 'v' before a digit removed."""
        value = self.raw.strip().lower()
        if len(value) > 1 and value[0] == "v" and value[1].isdigit():
            value = value[1:]
        return value


@dataclass(frozen=True)
class PackageCandidate:
    """
    Ordered, non-empty sequence of identifiers to try.

    Attributes:
        spec: The VersionSpec this was produced from
        identifiers: Candidate identifiers, most preferred first
        passthrough: True when the raw input is used as-is
    """
    spec: VersionSpec
    identifiers: tuple[str, ...]
    passthrough: bool = False

    def __post_init__(self):
        if not self.identifiers:
            raise ValueError("PackageCandidate must contain at least one identifier")

    def __iter__(self) -> Iterator[str]:
        return iter(self.identifiers)

    def __len__(self) -> int:
        return len(self.identifiers)

    def __getitem__(self, index: int) -> str:
        return self.identifiers[index]

    @property
    def primary(self) -> str:
        return self.identifiers[0]


def _dedupe(items: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return tuple(result)


def _numeric_candidates(family: RuntimeFamily, components: list[str]) -> list[str]:
    candidates = [family.prefix + "".join(components)]

    short = components[:family.significant_components]
    candidates.append(family.prefix + "".join(short))

    short_version = ".".join(short)
    candidates.extend(family.aliases.get(short_version, ()))
    return candidates


def normalize(family: RuntimeFamily, raw: str) -> PackageCandidate:
    """
    Map a version string to candidate package identifiers.

    Rules, in order:
    - empty input is passed through as the sole candidate
    - "latest" gives the family flagship; family keywords (e.g. Node "lts")
      give their identifier
    - numeric or dotted-numeric input gives prefix + all digits first, then
      prefix + the family's significant components, then known aliases
    - Java "1.N" adds the candidates for major version N after prefix + digits;
      "1.N.0_U" (update suffix) gives only those
    - anything else is passed through unchanged

    Args:
        family: Runtime family to resolve against
        raw: Version string as typed by the user

    Returns:
        PackageCandidate with at least one identifier
    """
    spec = VersionSpec(family=family, raw=raw)
    value = spec.cleaned

    if not value:
        return PackageCandidate(spec=spec, identifiers=(raw,), passthrough=True)

    if value == "latest":
        return PackageCandidate(spec=spec, identifiers=(family.flagship,))

    if value in family.keywords:
        return PackageCandidate(spec=spec, identifiers=(family.keywords[value],))

    if NUMERIC_RE.match(value):
        components = value.split(".")
        candidates = _numeric_candidates(family, components)
        if family.name == "java":
            legacy = LEGACY_JAVA_RE.match(value)
            if legacy:
                # prefix + digits stays first; 1.N then falls back to major N
                candidates = candidates[:1] + _numeric_candidates(family, [legacy.group(1)])
        return PackageCandidate(spec=spec, identifiers=_dedupe(candidates))

    if family.name == "java":
        legacy = LEGACY_JAVA_RE.match(value)
        if legacy:
            return PackageCandidate(
                spec=spec,
                identifiers=_dedupe(_numeric_candidates(family, [legacy.group(1)])),
            )

    return PackageCandidate(spec=spec, identifiers=(raw.strip() or raw,), passthrough=True)
