"""Parse HLS manifests into variants, key directives and segments."""

import logging
import re
from typing import AnyStr, Iterable, Iterator, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlparse

METHOD_NONE = "NONE"
METHOD_AES_128 = "AES-128"
METHOD_AES_128_ALIASES = (METHOD_AES_128, "AES-CBC-128")
IV_LENGTH = 16

M3U8_STREAM_TAG = "#EXT-X-STREAM-INF"
M3U8_KEY_TAG = "#EXT-X-KEY:"
M3U8_BANDWIDTH_RE = re.compile(r"[:,]BANDWIDTH=(\d+)")
M3U8_ATTRIBUTE_RE = re.compile(r"([A-Z0-9-]+)=(\"[^\"]*\"|[^,]*)")

logger = logging.getLogger(__name__)


class MalformedUrlException(Exception):
    """Raised when a URL could not be parsed."""


class Variant(NamedTuple):
    bandwidth: int
    uri: str


class KeyDirective(NamedTuple):
    method: str
    uri: Optional[str] = None
    iv: Optional[bytes] = None

    @property
    def is_encrypted(self) -> bool:
        return self.method == METHOD_AES_128


NO_ENCRYPTION = KeyDirective(METHOD_NONE)


class Segment(NamedTuple):
    url: str
    key: KeyDirective
    sequence: int


def validate_url(url: AnyStr) -> AnyStr:
    """Return the URL unchanged if it is an absolute http(s) URL."""

    try:
        parsed_url = urlparse(url)
    except ValueError as error:
        raise MalformedUrlException("Could not parse URL \"{0}\"".format(url)) from error

    if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
        raise MalformedUrlException("Could not parse URL \"{0}\"".format(url))
    return url


def get_base_url(url: AnyStr) -> AnyStr:
    """Truncate a manifest URL after its last slash."""

    return url[:url.rfind("/") + 1]


def resolve_url(base_url: AnyStr, uri: AnyStr) -> AnyStr:
    """Resolve a manifest URI against the directory of its manifest."""

    uri = uri.strip()
    if urlparse(uri).scheme in ("http", "https"):
        return validate_url(uri)
    return validate_url(urljoin(base_url, uri))


def parse_attributes(line: AnyStr) -> dict:
    """Return the attribute list of a tag line as a dictionary."""

    _, _, attribute_list = line.partition(":")
    return {name: value.strip("\"") for name, value in M3U8_ATTRIBUTE_RE.findall(attribute_list)}


def parse_iv(iv_str: AnyStr) -> bytes:
    """Convert a hexadecimal IV attribute to 16 bytes."""

    if iv_str[:2] in ("0x", "0X"):
        iv_str = iv_str[2:]
    if len(iv_str) % 2:
        iv_str = "0" + iv_str
    iv = bytes.fromhex(iv_str)
    if len(iv) > IV_LENGTH:
        raise ValueError("IV is longer than {0} bytes".format(IV_LENGTH))
    return iv.rjust(IV_LENGTH, b"\x00")


def parse_key_directive(line: AnyStr, base_url: AnyStr) -> KeyDirective:
    """Parse an #EXT-X-KEY tag.

    Unrecognized methods and malformed attributes are downgraded to
    NO_ENCRYPTION so the download can carry on.
    """

    attributes = parse_attributes(line)
    method = attributes.get("METHOD")

    if method == METHOD_NONE:
        return NO_ENCRYPTION

    if method not in METHOD_AES_128_ALIASES:
        logger.warning("Unrecognized key method \"%s\". Segments will not be decrypted.", method)
        return NO_ENCRYPTION

    try:
        if not attributes.get("URI"):
            raise ValueError("No key URI was given")
        key_uri = resolve_url(base_url, attributes["URI"])
        iv = parse_iv(attributes["IV"]) if attributes.get("IV") else None
    except (ValueError, MalformedUrlException) as error:
        logger.warning("Malformed key directive \"%s\" (%s). Segments will not be decrypted.", line, error)
        return NO_ENCRYPTION

    return KeyDirective(METHOD_AES_128, key_uri, iv)


def is_content_line(line: AnyStr) -> bool:
    return bool(line) and not line.startswith("#")


def get_variants(lines: List[AnyStr]) -> List[Variant]:
    """Return the bandwidth-tagged variants of a master manifest."""

    variants = []
    for index, line in enumerate(lines):
        line = line.strip()
        if not line.startswith(M3U8_STREAM_TAG):
            continue
        bandwidth_match = M3U8_BANDWIDTH_RE.search(line)
        if not bandwidth_match:
            continue

        uri = next((following.strip() for following in lines[index + 1:] if is_content_line(following.strip())), None)
        if uri is None:
            continue
        variants.append(Variant(int(bandwidth_match.group(1)), uri))

    return variants


def is_master_playlist(lines: List[AnyStr]) -> bool:
    return any(line.strip().startswith(M3U8_STREAM_TAG) and M3U8_BANDWIDTH_RE.search(line) for line in lines)


def select_variant(variants: Iterable[Variant]) -> Optional[Variant]:
    """Return the highest bandwidth variant, keeping the first on a tie."""

    best_variant = None
    for variant in variants:
        if best_variant is None or variant.bandwidth > best_variant.bandwidth:
            best_variant = variant
    return best_variant


def enumerate_segments(lines: Iterable[AnyStr], base_url: AnyStr) -> Iterator[Segment]:
    """Yield the segments of a media manifest with the key directive in force for each."""

    key = NO_ENCRYPTION
    sequence = 0
    for line in lines:
        line = line.strip()
        if line.startswith(M3U8_KEY_TAG):
            key = parse_key_directive(line, base_url)
        elif is_content_line(line):
            yield Segment(resolve_url(base_url, line), key, sequence)
            sequence += 1


def split_lines(manifest_text: AnyStr) -> Tuple[AnyStr, ...]:
    return tuple(manifest_text.splitlines())
