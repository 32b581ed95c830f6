"""AES-128 key handling and streaming segment decryption."""

import logging
from typing import AnyStr, Iterable, Iterator, Optional

import requests
from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from .manifest import KeyDirective

KEY_LENGTH = 16

logger = logging.getLogger(__name__)


class KeyFetchException(Exception):
    """Raised when a decryption key could not be retrieved."""


def sequence_to_iv(sequence: int) -> bytes:
    """Return the IV implied by a segment's position in the playlist."""

    return sequence.to_bytes(AES.block_size, byteorder="big")


def parse_key(key_str: AnyStr) -> bytes:
    """Convert a hexadecimal key override to bytes."""

    if key_str[:2] in ("0x", "0X"):
        key_str = key_str[2:]
    key = bytes.fromhex(key_str)
    if len(key) != KEY_LENGTH:
        raise ValueError("Key must be {0} bytes".format(KEY_LENGTH))
    return key


def decrypt_stream(chunks: Iterable[bytes], key: bytes, iv: bytes) -> Iterator[bytes]:
    """Decrypt AES-CBC data as it arrives, stripping PKCS#7 padding from the last block."""

    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    pending = b""
    for chunk in chunks:
        if not chunk:
            continue
        pending += chunk
        # Always keep at least one block back so the padding can be removed at the end
        cut = (len(pending) // AES.block_size - 1) * AES.block_size
        if cut > 0:
            yield cipher.decrypt(pending[:cut])
            pending = pending[cut:]

    if len(pending) % AES.block_size or not pending:
        raise ValueError("Encrypted data length is not a multiple of {0}".format(AES.block_size))
    yield unpad(cipher.decrypt(pending), AES.block_size)


class CryptoContext:
    """Hold the key and IV in force for the segment being downloaded."""

    def __init__(self, session: requests.Session, key: Optional[bytes] = None):
        self.session = session
        self.key_override = key
        self.key_uri = None
        self.key = None
        self.iv = None
        self.directive = None

    @property
    def is_active(self) -> bool:
        return self.directive is not None and self.directive.is_encrypted

    def fetch_key(self, key_uri: AnyStr) -> bytes:
        try:
            with self.session.get(key_uri) as key_request:
                key_request.raise_for_status()
                key = key_request.content
        except requests.RequestException as error:
            raise KeyFetchException("Failed to retrieve key from \"{0}\"".format(key_uri)) from error

        if len(key) != KEY_LENGTH:
            raise KeyFetchException("Key from \"{0}\" is {1} bytes, expected {2}".format(key_uri, len(key), KEY_LENGTH))
        return key

    def activate(self, directive: KeyDirective, sequence: int):
        """Make a key directive current for the segment at the given position."""

        self.directive = directive
        if not directive.is_encrypted:
            self.iv = None
            return

        if self.key_override:
            self.key = self.key_override
        elif directive.uri != self.key_uri:
            logger.info("Retrieving key from %s", directive.uri)
            self.key = self.fetch_key(directive.uri)
            self.key_uri = directive.uri

        self.iv = directive.iv or sequence_to_iv(sequence)

    def decrypt_stream(self, chunks: Iterable[bytes]) -> Iterable[bytes]:
        if not self.is_active:
            return chunks
        return decrypt_stream(chunks, self.key, self.iv)
