# qbsync Category Paths
# Category path <-> directory mapping and the per-directory category marker

import re
from pathlib import Path
from typing import Optional

from lxml import etree

from qbsync.errors import FilesystemError, MarkerNotFoundError, MarkerParseError
from qbsync.utils.paths import ensure_dir

CATEGORY_FILE = "gitsync_category.xml"

# A single "/" separates categories, "//" is a literal slash inside a name.
_SEPARATOR = re.compile(r"(?<!/)/(?!/)")
_DISALLOWED = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


def category_segments(category_path: str) -> list[str]:
    """
    Split a category path into its (unsanitized) category names.

    Args:
        category_path: Slash-delimited category path, e.g. ``top/A//B``.

    Returns:
        Trimmed names with escaped slashes collapsed, e.g. ``["top", "A/B"]``.
    """
    segments = (part.replace("//", "/").strip() for part in _SEPARATOR.split(category_path))
    return [segment for segment in segments if segment]


def sanitize_segment(segment: str) -> str:
    """Replace characters that are not allowed in directory names with ``-``."""
    return _DISALLOWED.sub("-", segment.strip())


def path_to_directories(category_path: str) -> list[str]:
    """
    Map a category path to the directory names that hold it.

    Sanitized segments never contain ``/``, so joining them and splitting
    again returns the same list.

    Args:
        category_path: Slash-delimited category path.

    Returns:
        Ordered directory names, outermost first.
    """
    return [sanitize_segment(segment) for segment in category_segments(category_path)]


def directories_to_path(segments: list[str]) -> str:
    """Join directory names back into a relative POSIX path."""
    return "/".join(segments)


def category_directory(category_path: Optional[str]) -> str:
    """Relative directory for a category path (empty string for none)."""
    if not category_path:
        return ""
    return directories_to_path(path_to_directories(category_path))


def in_scope(path: str, prefix: Optional[str]) -> bool:
    """
    Check whether ``path`` is ``prefix`` or lies below it.

    ``prefix/child`` is in scope, ``prefix2`` and ``prefix//x`` are not.

    Args:
        path: Category path or relative directory.
        prefix: Scope prefix. Empty or None matches everything.

    Returns:
        True if in scope.
    """
    if not prefix:
        return True
    if path == prefix:
        return True
    if not path.startswith(prefix + "/"):
        return False
    return path[len(prefix) + 1 : len(prefix) + 2] != "/"


def is_ignored(category_path: str, ignore_pattern: Optional[re.Pattern[str]]) -> bool:
    """True if any category name in the path matches the ignore pattern."""
    if ignore_pattern is None:
        return False
    return any(ignore_pattern.search(segment) for segment in category_segments(category_path))


# ----------------------------------------------------------------------
# Marker files
# ----------------------------------------------------------------------


def category_marker_content(category_path: str) -> str:
    """Build a minimal category document declaring ``category_path``."""
    quiz = etree.Element("quiz")
    question = etree.SubElement(quiz, "question", {"type": "category"})
    category = etree.SubElement(question, "category")
    etree.SubElement(category, "text").text = category_path
    body = etree.tostring(quiz, encoding="unicode", pretty_print=True)
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def read_category_marker(directory: Path) -> str:
    """
    Read the category path declared by a directory's marker file.

    Args:
        directory: Directory expected to hold ``gitsync_category.xml``.

    Returns:
        Declared category path.

    Raises:
        MarkerNotFoundError: If the directory has no marker.
        MarkerParseError: If the marker declares no category.
    """
    marker = directory / CATEGORY_FILE
    if not marker.is_file():
        raise MarkerNotFoundError(f"No category file in {directory}.")

    try:
        root = etree.parse(str(marker), etree.XMLParser(resolve_entities=False)).getroot()
    except etree.XMLSyntaxError as e:
        raise MarkerParseError(f"Broken category file {marker}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Could not read {marker}: {e}") from e

    text = root.findtext("./question/category/text")
    if text is None:
        text = root.findtext(".//category/text")
    if text is None or not text.strip():
        raise MarkerParseError(f"Category file {marker} does not declare a category.")
    return text.strip()


def write_category_marker(directory: Path, category_path: str, content: Optional[str] = None) -> Path:
    """
    Write a new marker file. An existing marker is never replaced.

    Args:
        directory: Category directory.
        category_path: Path the marker declares.
        content: Full marker document. Built from ``category_path`` if omitted.

    Returns:
        Path of the written marker.

    Raises:
        FileExistsError: If the directory already has a marker.
        FilesystemError: If the marker cannot be written.
    """
    marker = directory / CATEGORY_FILE
    if marker.exists():
        raise FileExistsError(f"Category file already exists: {marker}")

    try:
        ensure_dir(directory)
        with open(marker, "x", encoding="utf-8") as f:
            f.write(content if content is not None else category_marker_content(category_path))
    except FileExistsError:
        raise
    except OSError as e:
        raise FilesystemError(f"Could not write {marker}: {e}") from e
    return marker


class CategoryResolver:
    """
    Materializes categories as directories below a repository root.

    Remembers the directory of the configured subcategory once it has been
    seen, so callers know where the scoped part of the tree begins.
    """

    def __init__(self, root: Path, subcategory: Optional[str] = None):
        self.root = root
        self.subcategory = subcategory
        self.matched_directory: Optional[Path] = None

    def directory_for(self, category_path: str) -> Path:
        """Directory a category lives in (not created)."""
        return self.root.joinpath(*path_to_directories(category_path))

    def materialize(self, category_path: str, content: Optional[str] = None) -> Path:
        """
        Create the directory for a category and its marker if missing.

        Args:
            category_path: Full category path.
            content: Marker document to write for a new category.

        Returns:
            The category's directory.

        Raises:
            FilesystemError: If the directory or marker cannot be written.
        """
        directory = self.directory_for(category_path)
        try:
            ensure_dir(directory)
        except OSError as e:
            raise FilesystemError(f"Could not create directory {directory}: {e}") from e

        if not (directory / CATEGORY_FILE).exists():
            write_category_marker(directory, category_path, content)

        if self.subcategory and category_path == self.subcategory:
            self.matched_directory = directory
        return directory
