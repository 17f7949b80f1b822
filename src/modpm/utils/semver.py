"""Version parsing and ordering helpers."""

from typing import Iterable, Optional

from packaging import version

from ..constants import LATEST_TAG


def parse_version(value: str) -> Optional[version.Version]:
    """Parse ``value`` as a version, returning None if it is not one."""
    if not value:
        return None
    try:
        return version.Version(value)
    except version.InvalidVersion:
        return None


def is_valid_version(value: str) -> bool:
    return parse_version(value) is not None


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Versions that do not parse are ordered below any that do, and by plain
    string order among themselves.

    Returns:
        int: -1, 0 or 1 as ``v1`` is lower than, equal to or greater than ``v2``
    """
    p1, p2 = parse_version(v1), parse_version(v2)
    if p1 is not None and p2 is not None:
        return (p1 > p2) - (p1 < p2)
    if p1 is not None:
        return 1
    if p2 is not None:
        return -1
    return (v1 > v2) - (v1 < v2)


def latest_version(versions: Iterable[str]) -> str:
    """Pick the greatest version, ignoring ``latest`` and non-version tags.

    Raises:
        ValueError: If no version in ``versions`` parses
    """
    latest = None
    latest_parsed = None
    for candidate in versions:
        if candidate == LATEST_TAG:
            continue
        parsed = parse_version(candidate)
        if parsed is None:
            continue
        if latest_parsed is None or parsed > latest_parsed:
            latest, latest_parsed = candidate, parsed

    if latest is None:
        raise ValueError("no valid version found")
    return latest
