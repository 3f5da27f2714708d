"""Remote version discovery and version range matching."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from kegbin.core.errors import InvalidVersionConstraint
from kegbin.core.logging import get_logger
from kegbin.providers.base import RepositoryClient

log = get_logger(__name__)

SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+([0-9A-Za-z.-]+))?$"
)
LEADING_NON_NUMERIC = re.compile(r"^[^0-9]*")

COMPARATOR_PATTERN = re.compile(
    r"\s*(\^|~>|~|>=|<=|!=|==|=|>|<)?\s*(\*|[0-9xX][0-9A-Za-z.*]*)\s*,?\s*"
)
WILDCARDS = {"*", "x", "X"}


@dataclass(frozen=True, order=True)
class _Release:
    core: Version
    build: str
    text: str


def parse_release(tag: str) -> _Release | None:
    """Parse a tag as a stable semantic version.

    Returns None for tags that are not MAJOR.MINOR.PATCH shaped or that
    carry a pre-release component.
    """
    candidate = LEADING_NON_NUMERIC.sub("", tag.strip())
    match = SEMVER_PATTERN.match(candidate)
    if not match:
        return None
    major, minor, patch, pre, build = match.groups()
    if pre:
        return None
    core = f"{major}.{minor}.{patch}"
    text = f"{core}+{build}" if build else core
    return _Release(core=Version(core), build=build or "", text=text)


def sort_versions(tags: Iterable[str]) -> List[str]:
    """Stable semantic versions from ``tags``, unique and newest first.

    Build metadata does not count towards precedence, so of several tags
    sharing a MAJOR.MINOR.PATCH only the highest sorting one is kept.
    """
    releases = sorted((r for r in map(parse_release, tags) if r is not None), reverse=True)
    seen: set[Version] = set()
    result = []
    for release in releases:
        if release.core in seen:
            continue
        seen.add(release.core)
        result.append(release.text)
    return result


class VersionResolver:
    """Lists the releases of a repository from its tags."""

    def __init__(self, client: RepositoryClient) -> None:
        self.client = client

    async def list_versions(self, repository: str) -> List[str]:
        """Return released versions of ``repository``, newest first.

        Raises:
            RemoteUnavailable: If the repository can not be reached.
        """
        tags = await self.client.list_tags(repository)
        versions = sort_versions(t.tag for t in tags)
        log.info(
            "versions_listed",
            url=repository,
            tags=len(tags),
            versions=len(versions)
        )
        return versions


def _components(version: str, constraint: str) -> list[int]:
    """Leading numeric components of a partial version like ``1.2.x``."""
    parts = version.split(".")
    if len(parts) > 3:
        raise InvalidVersionConstraint(constraint=constraint)

    numbers: list[int] = []
    wildcard_seen = False
    for part in parts:
        if part in WILDCARDS:
            wildcard_seen = True
        elif part.isdigit() and not wildcard_seen:
            numbers.append(int(part))
        else:
            raise InvalidVersionConstraint(constraint=constraint)
    return numbers


def _padded(numbers: list[int]) -> str:
    return ".".join(str(n) for n in (numbers + [0, 0, 0])[:3])


def _translate(op: str, numbers: list[int], constraint: str) -> list[str]:
    """Translate one comparator into PEP 440 specifiers."""
    n = len(numbers)
    if n == 0:
        if op in ("", "=", "==", "^", "~", "~>", ">=", "<="):
            return []
        raise InvalidVersionConstraint(constraint=constraint)

    major = numbers[0]
    minor = numbers[1] if n > 1 else 0
    patch = numbers[2] if n > 2 else 0
    exact = _padded(numbers)

    if op in ("", "=", "=="):
        if n == 3:
            return [f"=={exact}"]
        return [f"=={'.'.join(str(x) for x in numbers)}.*"]

    if op == "^":
        if major > 0 or n == 1:
            upper = f"{major + 1}.0.0"
        elif minor > 0 or n == 2:
            upper = f"0.{minor + 1}.0"
        else:
            upper = f"0.0.{patch + 1}"
        return [f">={exact}", f"<{upper}"]

    if op in ("~", "~>"):
        upper = f"{major}.{minor + 1}.0" if n > 1 else f"{major + 1}.0.0"
        return [f">={exact}", f"<{upper}"]

    if op == ">":
        if n == 3:
            return [f">{exact}"]
        bumped = [major + 1] if n == 1 else [major, minor + 1]
        return [f">={_padded(bumped)}"]

    if op == ">=":
        return [f">={exact}"]

    if op == "<":
        return [f"<{exact}"]

    if op == "<=":
        if n == 3:
            return [f"<={exact}"]
        bumped = [major + 1] if n == 1 else [major, minor + 1]
        return [f"<{_padded(bumped)}"]

    # op == "!="
    if n == 3:
        return [f"!={exact}"]
    return [f"!={'.'.join(str(x) for x in numbers)}.*"]


@dataclass(frozen=True)
class VersionConstraint:
    """A range expression: alternatives joined by ``||``, each an AND set."""

    text: str
    alternatives: tuple[SpecifierSet, ...]

    def contains(self, version: str) -> bool:
        try:
            parsed = Version(version)
        except InvalidVersion:
            return False
        return any(spec.contains(parsed) for spec in self.alternatives)


def parse_constraint(text: str) -> VersionConstraint:
    """Parse an npm/cargo style version range.

    Supported comparators: bare or ``=``/``==`` versions, ``^``, ``~``,
    ``>``, ``>=``, ``<``, ``<=``, ``!=`` and ``x``/``*`` wildcards.
    Comparators separated by commas or spaces must all hold; ``||``
    separates alternatives. A bare full version only matches itself.

    Raises:
        InvalidVersionConstraint: If the expression can not be parsed.
    """
    alternatives: list[SpecifierSet] = []

    for alternative in text.split("||"):
        specs: list[str] = []
        pos = 0
        body = alternative.strip()
        if not body and text.strip():
            raise InvalidVersionConstraint(constraint=text)
        while pos < len(body):
            match = COMPARATOR_PATTERN.match(body, pos)
            if not match or match.end() == pos:
                raise InvalidVersionConstraint(constraint=text)
            op, version = match.group(1) or "", match.group(2)
            specs.extend(_translate(op, _components(version, text), text))
            pos = match.end()

        try:
            alternatives.append(SpecifierSet(",".join(specs)))
        except InvalidSpecifier as e:
            raise InvalidVersionConstraint(constraint=text) from e

    return VersionConstraint(text=text, alternatives=tuple(alternatives))


def select_version(versions: Sequence[str], constraint: str | None) -> str | None:
    """Pick the version to install.

    Without a constraint the first (newest) entry wins. With one, the
    highest version satisfying it wins.
    """
    if not versions:
        return None
    if constraint is None:
        return versions[0]

    parsed = parse_constraint(constraint)
    candidates = [v for v in versions if parsed.contains(v)]
    if not candidates:
        return None
    return max(candidates, key=Version)
