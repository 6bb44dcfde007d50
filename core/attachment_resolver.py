"""
Attachment resolution for MMS image references.

An ``img src`` in a takeout document does not name an on-disk file exactly.
The reference "Tony Smehrik - Text - 2022-07-01T01_06_39Z-2-1" is resolved
by taking its last space-separated token and looking for files whose name
contains it (HTML documents excluded). When nothing matches, the trailing
"-N" suffix is stripped from the token and the lookup is retried once.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

TRAILING_INDEX_PATTERN = re.compile(r"-\d+$")


def reference_tokens(reference: str) -> List[str]:
    """
    Return the search tokens for a reference, in the order they are tried.

    Example:
        >>> reference_tokens("Group Conversation - 2024-05-23T04_48_32Z-1-2")
        ['2024-05-23T04_48_32Z-1-2', '2024-05-23T04_48_32Z-1']
    """
    parts = reference.split()
    if not parts:
        return []
    token = parts[-1]
    tokens = [token]
    stripped = TRAILING_INDEX_PATTERN.sub("", token)
    if stripped and stripped != token:
        tokens.append(stripped)
    return tokens


class AttachmentResolver:
    """
    Resolves image references to files below a media directory.

    The directory is listed once; resolution is deterministic for a given
    listing because candidates are kept in sorted relative-path order and the
    first match wins.
    """

    def __init__(self, media_dir: Path):
        self.media_dir = Path(media_dir)
        self._candidates: Optional[List[Path]] = None

    @property
    def candidates(self) -> List[Path]:
        if self._candidates is None:
            self._candidates = self._list_candidates()
        return self._candidates

    def _list_candidates(self) -> List[Path]:
        if not self.media_dir.is_dir():
            logger.warning(f"Media directory not found: {self.media_dir}")
            return []
        files = [
            path for path in self.media_dir.rglob("*")
            if path.is_file() and path.suffix.lower() != ".html"
        ]
        files.sort(key=lambda path: path.relative_to(self.media_dir).as_posix())
        logger.debug(f"Indexed {len(files)} candidate attachment files in {self.media_dir}")
        return files

    def resolve(self, reference: str) -> Optional[Path]:
        """
        Find the file for an image reference.

        Returns:
            Path of the matching file, or None when nothing matches
        """
        for token in reference_tokens(reference):
            for path in self.candidates:
                if token in path.name:
                    return path
        logger.debug(f"No attachment file found for reference: {reference}")
        return None

    def read_media(self, reference: str) -> Optional[Tuple[str, bytes]]:
        """
        Resolve a reference and read the file.

        Returns:
            (file name, content) or None when unresolved or unreadable
        """
        path = self.resolve(reference)
        if path is None:
            return None
        try:
            return path.name, path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read attachment {path}: {e}")
            return None
