"""Native sequential HLS downloader."""

import logging
import os
from typing import AnyStr, Callable, List, Optional

import requests

from .crypto import CryptoContext
from .manifest import Segment

BLOCK_SIZE = 8192
MAX_RENAME_ATTEMPTS = 100
RENAME_MARKER = "_"

logger = logging.getLogger(__name__)


class SegmentFetchException(Exception):
    """Raised when a segment could not be downloaded or decrypted."""


class OutputPathException(Exception):
    """Raised when a free output path could not be found."""


def get_output_path(filename: AnyStr) -> AnyStr:
    """Return a path that does not exist yet, marking the name before its extension if needed."""

    for _ in range(MAX_RENAME_ATTEMPTS):
        if not os.path.exists(filename):
            return filename
        base_path, extension = os.path.splitext(filename)
        filename = "{0}{1}{2}".format(base_path, RENAME_MARKER, extension)

    raise OutputPathException("Could not find a free output path after {0} attempts".format(MAX_RENAME_ATTEMPTS))


def download_segment(session: requests.Session, segment: Segment, crypto: CryptoContext, file):
    with session.get(segment.url, stream=True) as r:
        r.raise_for_status()
        for block in crypto.decrypt_stream(r.iter_content(BLOCK_SIZE)):
            file.write(block)


def download_hls(session: requests.Session, segments: List[Segment], filename: AnyStr, crypto: CryptoContext,
                 progress_callback: Optional[Callable[[int, int], None]] = None):
    """Download segments in order, decrypting them into a single file.

    A failure on the final segment is tolerated; any other failure aborts the
    download with the file truncated after the last complete segment.
    """

    total = len(segments)
    with open(filename, "wb") as f:
        for index, segment in enumerate(segments):
            crypto.activate(segment.key, segment.sequence)

            segment_start = f.tell()
            try:
                download_segment(session, segment, crypto, f)
            except (requests.RequestException, ValueError) as error:
                f.seek(segment_start)
                f.truncate()
                if total - index < 2:
                    logger.warning("Skipping final segment %d / %d: %s", index + 1, total, error)
                    continue
                raise SegmentFetchException("Failed to download segment {0} / {1} from \"{2}\"".format(
                    index + 1, total, segment.url)) from error

            if progress_callback:
                progress_callback(index + 1, total)

    return True
