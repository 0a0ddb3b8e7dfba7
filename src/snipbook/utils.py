"""Utility functions for snipbook."""
from typing import Optional, Tuple

# Marker users may type in front of a tag name ("#rust")
TAG_MARKER = "#"


def sanitize_for_terminal(text: str) -> str:
    """Sanitize text for terminal-friendly filenames.

    Converts text to a format that:
    - Contains no spaces (uses hyphens between words)
    - Uses only alphanumeric characters, hyphens, and underscores

    Examples:
        "before big import" -> "before-big-import"
        "Work: Q3/cleanup" -> "Work-Q3-cleanup"

    Args:
        text: The text to sanitize.

    Returns:
        Terminal-friendly string with no spaces.
    """
    if not text:
        return ""

    result = (
        text.replace(":", " ").replace(";", " ").replace("/", " ").replace("\\", " ")
    )

    sanitized_words = []
    for word in result.split():
        sanitized_word = "".join(c if c.isalnum() or c in "-_" else "" for c in word)
        if sanitized_word:
            sanitized_words.append(sanitized_word)

    return "-".join(sanitized_words)


def canonical_tag_name(raw_name: str) -> str:
    """Strip whitespace and every leading tag marker from a user-typed tag.

    Applying it twice gives the same result as applying it once.

    Examples:
        "  #Rust " -> "Rust"
        "##x" -> "x"
        "async" -> "async"
        "#" -> ""
    """
    name = (raw_name or "").strip()
    while name.startswith(TAG_MARKER):
        name = name[len(TAG_MARKER):].strip()
    return name


def first_matching_line(text: str, needle_lower: str) -> Optional[Tuple[int, str]]:
    """Find the first line of text containing needle (case-insensitive).

    Args:
        text: Text to scan line by line.
        needle_lower: Lowercased substring to look for.

    Returns:
        (1-based line number, trimmed line) or None when no single line matches.
    """
    for index, line in enumerate(text.splitlines(), start=1):
        if needle_lower in line.lower():
            return index, line.strip()
    return None
