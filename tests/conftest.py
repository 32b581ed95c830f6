"""Shared fixtures for hlsdownload tests."""

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from hlsdownload import hlsdownload

KEY = bytes(range(16))
IV = bytes.fromhex("0123456789abcdef0123456789abcdef")


def encrypt(content: bytes, key: bytes = KEY, iv: bytes = IV) -> bytes:
    return AES.new(key, AES.MODE_CBC, iv=iv).encrypt(pad(content, AES.block_size))


def playlist(*lines) -> str:
    return "\n".join(("#EXTM3U",) + lines) + "\n"


@pytest.fixture(autouse=True)
def cmdl_opts(monkeypatch):
    """Reset parsed command line options between tests."""

    monkeypatch.setattr(hlsdownload, "_CMDL_OPTS", None)


@pytest.fixture
def session():
    return hlsdownload.create_session()
