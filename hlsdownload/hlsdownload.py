"""Download and decrypt HLS playlists into a single file."""

import argparse
import logging
import os
import sys
import time
from typing import AnyStr, Callable, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from .crypto import CryptoContext, KeyFetchException, parse_key
from .hls_dl import OutputPathException, SegmentFetchException, download_hls, get_output_path
from .manifest import (MalformedUrlException, enumerate_segments, get_base_url, get_variants, is_master_playlist,
                       resolve_url, select_variant, split_lines, validate_url)

__version__ = "1.0"
__license__ = "MIT"

MODULE_NAME = "hlsdownload"

KILOBIT_BANDWIDTH = 1024
MAX_PLAYLIST_DEPTH = 5

logger = logging.getLogger(__name__)

CMDL_USAGE = "%(prog)s [options] url output"
CMDL_VERSION = __version__
cmdl_parser = argparse.ArgumentParser(usage=CMDL_USAGE, conflict_handler="resolve")

cmdl_parser.add_argument("-q", "--quiet", action="store_true", dest="quiet", help="suppress output to console")
cmdl_parser.add_argument("-l", "--log", nargs="?", const=f"[{MODULE_NAME}] {time.strftime('%Y-%m-%d')}.log", dest="log", metavar="PATH", help="log output to file")
cmdl_parser.add_argument("-v", "--version", action="version", version=CMDL_VERSION)
cmdl_parser.add_argument("url", action="store", help="playlist URL")
cmdl_parser.add_argument("output", action="store", help="output file path")

dl_group = cmdl_parser.add_argument_group("download options")
dl_group.add_argument("-k", "--key", dest="key", metavar="HEX", help="decryption key to use instead of the playlist key URI")
dl_group.add_argument("-c", "--cookie", dest="cookie", metavar="COOKIE", help="cookie header value (string or filepath)")
dl_group.add_argument("-y", "--proxy", dest="proxy", metavar="PROXY", help="http or socks proxy")
dl_group.add_argument("--user-agent", dest="user_agent", metavar="USER_AGENT", help="specify a custom user agent for the download session")

# Globals

_CMDL_OPTS = None


class ArgumentException(Exception):
    """Raised when reading the argument failed."""

class ManifestFetchException(Exception):
    """Raised when a playlist could not be retrieved."""

class FormatNotSupportedException(Exception):
    """Raised when the playlist format is not supported."""

class FormatNotAvailableException(Exception):
    """Raised when the playlist has no media to download."""


EXIT_CODES = (
    ((ArgumentException, MalformedUrlException), 2),
    ((ManifestFetchException, FormatNotSupportedException, FormatNotAvailableException), 3),
    ((KeyFetchException,), 4),
    ((SegmentFetchException, OutputPathException), 5),
)


## Utility methods

def configure_logger():
    """Initialize logger."""

    if _CMDL_OPTS.log:
        package_logger = logging.getLogger(MODULE_NAME)
        package_logger.setLevel(logging.INFO)
        for handler in [h for h in package_logger.handlers if isinstance(h, logging.FileHandler)]:
            package_logger.removeHandler(handler)
            handler.close()
        log_handler = logging.FileHandler(_CMDL_OPTS.log, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
        log_handler.setFormatter(formatter)
        package_logger.addHandler(log_handler)


def log_exception(error: Exception):
    """Process exception for logger."""

    if _CMDL_OPTS and _CMDL_OPTS.log:
        sys.stdout.write("{0}: {1}\n".format(type(error).__name__, str(error)))
        sys.stdout.flush()
        logger.exception("An exception was encountered:\n")
    else:
        output("{0}: {1}\n".format(type(error).__name__, str(error)), logging.ERROR, force=True)


def output(out_str: AnyStr, level=logging.INFO, force: bool = False):
    """Print status to console unless quiet flag is set."""

    if _CMDL_OPTS and _CMDL_OPTS.log:
        logger.log(level, out_str.strip("\n"))

    if not (_CMDL_OPTS and _CMDL_OPTS.quiet) or force:
        sys.stdout.write(out_str)
        sys.stdout.flush()


def read_cookie(cookie: AnyStr) -> AnyStr:
    """Read a cookie value from a file path, or use the argument as the value."""

    try:
        with open(cookie, "r") as cookie_file:
            cookie = cookie_file.read()
        output("Cookie read from file.\n", logging.INFO)
    except OSError:
        output("Cookie read as string.\n", logging.INFO)
    return cookie.strip()


def create_session(cookie: Optional[AnyStr] = None, user_agent: Optional[AnyStr] = None,
                   proxy: Optional[AnyStr] = None) -> requests.Session:
    """Create a session that sends the cookie with every playlist, key and segment request."""

    session = requests.session()

    adapter = HTTPAdapter(max_retries=0)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({"User-Agent": user_agent or f"{MODULE_NAME}/{__version__}"})

    if cookie and cookie.strip():
        session.headers.update({"Cookie": cookie.strip()})

    if proxy:
        proxies = {
            "http": proxy,
            "https": proxy
        }
        session.proxies.update(proxies)

    return session


## Playlist methods

def fetch_manifest(session: requests.Session, manifest_url: AnyStr) -> Tuple[AnyStr, ...]:
    """Retrieve a playlist as a sequence of lines."""

    validate_url(manifest_url)
    try:
        with session.get(manifest_url) as manifest_request:
            manifest_request.raise_for_status()
            return split_lines(manifest_request.text)
    except requests.RequestException as error:
        raise ManifestFetchException("Failed to retrieve playlist \"{0}\"".format(manifest_url)) from error


def resolve_playlist(session: requests.Session, manifest_url: AnyStr) -> Tuple[Tuple[AnyStr, ...], AnyStr]:
    """Follow master playlists to the highest bandwidth media playlist."""

    for _ in range(MAX_PLAYLIST_DEPTH + 1):
        lines = fetch_manifest(session, manifest_url)
        if not is_master_playlist(lines):
            return lines, get_base_url(manifest_url)

        variant = select_variant(get_variants(lines))
        if variant is None:
            raise FormatNotAvailableException("Could not retrieve stream playlist from master playlist")

        output("Found master playlist, fetching highest stream at {0}Kb/s\n".format(variant.bandwidth // KILOBIT_BANDWIDTH),
               logging.INFO)
        manifest_url = resolve_url(get_base_url(manifest_url), variant.uri)

    raise FormatNotSupportedException("Master playlists are nested more than {0} levels deep".format(MAX_PLAYLIST_DEPTH))


def download_playlist(session: requests.Session, manifest_url: AnyStr, filename: AnyStr, key: Optional[bytes] = None,
                      progress_callback: Optional[Callable[[int, int], None]] = None) -> AnyStr:
    """Resolve a playlist and download its segments to a free path next to filename."""

    lines, base_url = resolve_playlist(session, manifest_url)
    segments = list(enumerate_segments(lines, base_url))
    if not segments:
        raise FormatNotAvailableException("Could not retrieve segments from playlist")

    filename = get_output_path(filename)
    output("Download to \"{0}\"\n".format(filename), logging.INFO)

    crypto = CryptoContext(session, key)
    download_hls(session, segments, filename, crypto, progress_callback)
    return filename


def perform_native_hls_dl(session: requests.Session, manifest_url: AnyStr, filename: AnyStr, key: Optional[bytes] = None):
    """Download a playlist while printing progress using rich.progress."""

    with Progress(TextColumn("{task.description}"), BarColumn(), MofNCompleteColumn(),
                  disable=bool(_CMDL_OPTS and _CMDL_OPTS.quiet)) as progress:
        task_id = progress.add_task("Downloading", total=None)

        def update_progress(current: int, total: int):
            progress.update(task_id, completed=current, total=total)
            output("{0} / {1}\n".format(current, total), logging.INFO)

        filename = download_playlist(session, manifest_url, filename, key, update_progress)

    output("\nDone.\n", logging.INFO)
    return filename


def main():
    """Main entry"""

    try:
        configure_logger()

        key = None
        if _CMDL_OPTS.key:
            try:
                key = parse_key(_CMDL_OPTS.key)
            except ValueError as error:
                raise ArgumentException("Key must be 32 hexadecimal digits") from error

        cookie = read_cookie(_CMDL_OPTS.cookie) if _CMDL_OPTS.cookie else None
        session = create_session(cookie, _CMDL_OPTS.user_agent, _CMDL_OPTS.proxy)

        output_dir = os.path.dirname(_CMDL_OPTS.output)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        perform_native_hls_dl(session, _CMDL_OPTS.url, _CMDL_OPTS.output, key)

    except Exception as error:
        log_exception(error)
        raise


def get_exit_code(error: Exception) -> int:
    for exception_types, exit_code in EXIT_CODES:
        if isinstance(error, exception_types):
            return exit_code
    return 1


def cli():
    """CLI entry"""

    global _CMDL_OPTS

    try:
        _CMDL_OPTS = cmdl_parser.parse_args()
        main()
    except KeyboardInterrupt:
        output("Keyboard interrupt received. Exiting...\n", logging.INFO)
        sys.exit(1)
    except Exception as error:
        sys.exit(get_exit_code(error))


if __name__ == "__main__":
    cli()
