"""
Interface Version Compatibility
===============================

Lets automation that was built against a different launcher release pass
arguments this launcher does not know, while still rejecting typos from people
typing commands by hand.

Decision table:
    ┌──────────────────────────────────────┬────────────────────────────────┐
    │ declared --interface-version         │ unknown arguments              │
    ├──────────────────────────────────────┼────────────────────────────────┤
    │ none                                 │ rejected (strict)              │
    │ == launcher interface version        │ rejected (strict)              │
    │ matches ^INTERFACE_VERSION, not equal│ stripped, reported as warning  │
    │ outside ^INTERFACE_VERSION           │ fatal, nothing is started      │
    └──────────────────────────────────────┴────────────────────────────────┘

A declared version that matches exactly means the caller and the launcher agree
on the full argument set, so anything unknown is a genuine mistake.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from network_launcher.errors import ConfigurationError, VersionCompatibilityError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Semantic Version
# =============================================================================

@dataclass(frozen=True, order=True)
class SemanticVersion:
    """
    Immutable semantic version with full comparison support.

    Supports:
    - Standard semver (MAJOR.MINOR.PATCH)
    - Pre-release tags (-alpha.1, -beta.2, -rc.1)
    - Build metadata (+build.123), ignored for ordering and equality
    """
    major: int
    minor: int
    patch: int
    prerelease: Tuple[Union[str, int], ...] = field(default=(), compare=False)
    build: str = field(default="", compare=False)

    # Stable versions sort above any prerelease of the same triple
    _sort_key: Tuple = field(init=False, repr=False, compare=True)

    _PATTERN = re.compile(
        r'^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)'
        r'(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?'
        r'(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$'
    )

    def __post_init__(self):
        if not self.prerelease:
            sort_prerelease = ((2, ""),)
        else:
            sort_prerelease = tuple(
                (0, p, "") if isinstance(p, int) else (1, 0, p)
                for p in self.prerelease
            )
        object.__setattr__(
            self,
            '_sort_key',
            (self.major, self.minor, self.patch, sort_prerelease)
        )

    @classmethod
    def parse(cls, version_str: str) -> "SemanticVersion":
        """Parse a strict ``MAJOR.MINOR.PATCH[-pre][+build]`` string."""
        match = cls._PATTERN.match(version_str.strip())
        if not match:
            raise ValueError(f"Invalid version format: {version_str}")

        prerelease_str = match.group(4) or ""
        prerelease: Tuple[Union[str, int], ...] = ()
        if prerelease_str:
            prerelease = tuple(
                int(p) if p.isdigit() else p
                for p in prerelease_str.split(".")
            )

        return cls(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            patch=int(match.group(3)),
            prerelease=prerelease,
            build=match.group(5) or "",
        )

    @classmethod
    def try_parse(cls, version_str: str) -> Optional["SemanticVersion"]:
        """Try to parse a version, returning None on failure."""
        try:
            return cls.parse(version_str)
        except (ValueError, AttributeError):
            return None

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{'.'.join(str(p) for p in self.prerelease)}"
        if self.build:
            version += f"+{self.build}"
        return version

    def __hash__(self) -> int:
        return hash(self._sort_key)


class VersionRequirement:
    """
    Caret requirement (``^X.Y.Z``) with cargo semantics.

    ``^1.2.3`` accepts ``>=1.2.3, <2.0.0``; for a 0.x base the upper bound
    tightens to the next minor (``^0.2.3`` is ``>=0.2.3, <0.3.0``). Prerelease
    versions only match when their release triple equals the base.
    """

    def __init__(self, base: SemanticVersion):
        self.base = base
        if base.major > 0:
            self.upper = SemanticVersion(base.major + 1, 0, 0)
        elif base.minor > 0:
            self.upper = SemanticVersion(0, base.minor + 1, 0)
        else:
            self.upper = SemanticVersion(0, 0, base.patch + 1)

    @classmethod
    def caret(cls, version_str: str) -> "VersionRequirement":
        return cls(SemanticVersion.parse(version_str))

    def matches(self, version: SemanticVersion) -> bool:
        if version.prerelease and version.release != self.base.release:
            return False
        return self.base <= version < self.upper

    def __str__(self) -> str:
        return f"^{self.base}"


# =============================================================================
# Argument Compatibility Resolution
# =============================================================================

class CompatibilityMode(Enum):
    """How strictly unknown arguments are treated."""
    STRICT_UNDECLARED = auto()   # no version declared
    STRICT_EXACT = auto()        # declared version == ours
    LENIENT = auto()             # compatible, different version
    INCOMPATIBLE = auto()        # outside the supported range


@dataclass(frozen=True)
class ArgumentCompatibilityOutcome(Generic[T]):
    """Resolved configuration plus the unknown tokens that were tolerated."""
    config: T
    tolerated: Tuple[str, ...] = ()
    version_declared: bool = False


# parse(args) -> (config, unknown tokens in order, declared interface version)
ParseFn = Callable[[List[str]], Tuple[T, List[str], Optional[SemanticVersion]]]


class ArgumentCompatibilityResolver(Generic[T]):
    """
    Resolves raw arguments into a configuration, applying the decision table
    above to unrecognized tokens.

    The parser is injected so the resolver stays independent of the CLI
    library; it must return the unknown tokens in their original order.
    """

    def __init__(self, parse: ParseFn, own_version: str):
        self._parse = parse
        self.own_version = SemanticVersion.parse(own_version)
        self.requirement = VersionRequirement(self.own_version)

    def classify(self, declared: Optional[SemanticVersion]) -> CompatibilityMode:
        if declared is None:
            return CompatibilityMode.STRICT_UNDECLARED
        if not self.requirement.matches(declared):
            return CompatibilityMode.INCOMPATIBLE
        if declared == self.own_version:
            return CompatibilityMode.STRICT_EXACT
        return CompatibilityMode.LENIENT

    def resolve(self, argv: Sequence[str]) -> ArgumentCompatibilityOutcome[T]:
        args = list(argv)
        config, unknown, declared = self._parse(args)
        mode = self.classify(declared)

        if mode is CompatibilityMode.INCOMPATIBLE:
            raise VersionCompatibilityError(
                f"Unsupported interface version {declared}. "
                f"Supported versions: {self.requirement}"
            )

        if not unknown:
            return ArgumentCompatibilityOutcome(config, (), declared is not None)

        if mode in (CompatibilityMode.STRICT_UNDECLARED, CompatibilityMode.STRICT_EXACT):
            raise ConfigurationError(f"unrecognized arguments: {unknown[0]}")

        tolerated: List[str] = []
        cursor = 0
        while unknown:
            token = unknown[0]
            args, cursor, config, unknown = self._strip(args, token, unknown[1:], cursor)
            tolerated.append(token)

        logger.warning(f"Unknown launcher parameters: {tolerated}")
        return ArgumentCompatibilityOutcome(config, tuple(tolerated), True)

    def _strip(
        self, args: List[str], token: str, remaining: List[str], cursor: int
    ) -> Tuple[List[str], int, T, List[str]]:
        """
        Remove the occurrence of ``token`` the parser left unconsumed.

        The same text may also appear as the value of a known flag, so each
        occurrence is tried (from ``cursor`` onward first) and the first whose
        removal re-parses cleanly with exactly ``remaining`` left is kept.
        """
        last_error: Optional[ConfigurationError] = None
        for index in _occurrences(args, token, cursor):
            candidate = args[:index] + args[index + 1:]
            try:
                config, unknown, _ = self._parse(candidate)
            except ConfigurationError as e:
                last_error = e
                continue
            if unknown == remaining:
                return candidate, index, config, unknown
        if last_error is not None:
            raise last_error
        raise ConfigurationError(f"unrecognized arguments: {token}")


def _occurrences(args: List[str], token: str, start: int) -> List[int]:
    """Indices of ``token``, those at or after ``start`` first."""
    matches = [i for i, arg in enumerate(args) if arg == token]
    return [i for i in matches if i >= start] + [i for i in matches if i < start]
