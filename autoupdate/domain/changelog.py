from typing import List, Optional, Sequence

UNRELEASED_HEADING = "## [Unreleased]"
CHANGED_SUBHEADING = "### Changed"
RELEASE_HEADING_PREFIX = "## ["
BULLET_PREFIX = "- "


def insert_changelog_entry(content: str, entries: Optional[Sequence[str]]) -> str:
    """
    Inserts bullet entries into the "## [Unreleased]" / "### Changed" section
    of a Keep-a-Changelog formatted document.

    - Without entries, or without an Unreleased section, the content is
      returned unchanged.
    - If "### Changed" already exists under Unreleased, the entries are
      appended right after its last bullet line.
    - Otherwise a new "### Changed" subsection is created directly below the
      Unreleased heading, ahead of any other subsection.

    Entries are not deduplicated: inserting the same entry twice yields it twice.

    Args:
        content (str): The changelog document.
        entries (Sequence[str]): Fully formatted lines, e.g. "- bumped X".

    Returns:
        str: The edited document.
    """
    if not entries:
        return content

    lines = content.split("\n")

    unreleased_idx = _find_unreleased_index(lines)
    if unreleased_idx < 0:
        return content

    next_release_idx = _find_next_release_index(lines, unreleased_idx)
    changed_idx = _find_changed_index(lines, unreleased_idx, next_release_idx)

    if changed_idx >= 0:
        insert_after = _find_last_bullet(lines, changed_idx, next_release_idx)
        lines[insert_after + 1:insert_after + 1] = list(entries)
    else:
        block = ["", CHANGED_SUBHEADING, ""] + list(entries)
        lines[unreleased_idx + 1:unreleased_idx + 1] = block

    return "\n".join(lines)


def _find_unreleased_index(lines: List[str]) -> int:
    for i, line in enumerate(lines):
        if line.strip() == UNRELEASED_HEADING:
            return i
    return -1


def _find_next_release_index(lines: List[str], start_idx: int) -> int:
    for i in range(start_idx + 1, len(lines)):
        if lines[i].strip().startswith(RELEASE_HEADING_PREFIX):
            return i
    return len(lines)


def _find_changed_index(lines: List[str], start_idx: int, end_idx: int) -> int:
    for i in range(start_idx + 1, end_idx):
        if lines[i].strip() == CHANGED_SUBHEADING:
            return i
    return -1


def _find_last_bullet(lines: List[str], changed_idx: int, end_idx: int) -> int:
    insert_after = changed_idx
    for i in range(changed_idx + 1, end_idx):
        stripped = lines[i].strip()
        if not stripped:
            continue
        if stripped.startswith(BULLET_PREFIX):
            insert_after = i
            continue
        # Next subsection heading or free text ends the bullet list
        break
    return insert_after
