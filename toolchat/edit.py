"""String replacement engine for the edit_file tool.

Matching is tried exact first, then line by line ignoring surrounding
whitespace, so a model that mis-indents old_string still lands its edit.
"""

from __future__ import annotations


def _line_spans(content: str) -> list[tuple[int, int]]:
    """(start, end) offsets of every line in content, newline excluded."""
    spans = []
    pos = 0
    for line in content.split("\n"):
        spans.append((pos, pos + len(line)))
        pos += len(line) + 1
    return spans


def _trimmed_matches(content: str, old_string: str) -> list[tuple[int, int]]:
    lines = content.split("\n")
    spans = _line_spans(content)
    body = old_string[:-1] if old_string.endswith("\n") else old_string
    wanted = [line.strip() for line in body.split("\n")]
    n = len(wanted)
    found = []
    i = 0
    while i <= len(lines) - n:
        if all(lines[i + j].strip() == wanted[j] for j in range(n)):
            start = spans[i][0]
            end = spans[i + n - 1][1]
            if old_string.endswith("\n") and i + n < len(lines):
                end += 1
            found.append((start, end))
            i += n
        else:
            i += 1
    return found


def replace(
    content: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> str:
    """Replace old_string with new_string in content.

    Raises ValueError with "no changes", "old_string must not be empty",
    "not found" or "multiple matches".
    """
    if old_string == new_string:
        raise ValueError("no changes")
    if not old_string:
        raise ValueError("old_string must not be empty")

    count = content.count(old_string)
    if count:
        if count > 1 and not replace_all:
            raise ValueError("multiple matches")
        return content.replace(old_string, new_string, -1 if replace_all else 1)

    matches = _trimmed_matches(content, old_string)
    if not matches:
        raise ValueError("not found")
    if len(matches) > 1 and not replace_all:
        raise ValueError("multiple matches")

    # Splice from the back so earlier offsets stay valid
    for start, end in reversed(matches):
        content = content[:start] + new_string + content[end:]
    return content
