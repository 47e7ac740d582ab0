from typing import List, Optional

from packaging.version import InvalidVersion, Version


def normalize_version(version: str) -> str:
    """Strips surrounding whitespace and a leading "v" from a version tag."""
    version = version.strip()
    if version[:1] in ("v", "V"):
        return version[1:]
    return version


def parse_version(version: str) -> Optional[Version]:
    try:
        return Version(normalize_version(version))
    except InvalidVersion:
        return None


def is_semver_like(version: str) -> bool:
    # Rejects floating tags such as "latest" or "stable"
    return parse_version(version) is not None


def is_newer_version(current: str, candidate: str) -> bool:
    """
    Returns True when candidate is strictly newer than current. Falls back to
    plain string comparison when either side is not a parsable version.
    """
    current_parsed = parse_version(current)
    candidate_parsed = parse_version(candidate)
    if current_parsed is not None and candidate_parsed is not None:
        return candidate_parsed > current_parsed
    return candidate > current


def sort_versions_descending(versions: List[str]) -> List[str]:
    """
    Sorts version tags newest first. Parsable versions come before anything
    else; unparsable tags follow in descending string order.
    """
    parsed = []
    unparsed = []
    for tag in versions:
        version = parse_version(tag)
        if version is None:
            unparsed.append(tag)
        else:
            parsed.append((version, tag))

    parsed.sort(key=lambda item: item[0], reverse=True)
    unparsed.sort(reverse=True)
    return [tag for _, tag in parsed] + unparsed
