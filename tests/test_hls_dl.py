import os

import pytest
import requests

from conftest import IV, KEY, encrypt
from hlsdownload import hls_dl
from hlsdownload.crypto import CryptoContext, KeyFetchException
from hlsdownload.hls_dl import OutputPathException, SegmentFetchException, download_hls, get_output_path
from hlsdownload.manifest import METHOD_AES_128, NO_ENCRYPTION, KeyDirective, Segment

BASE_URL = "https://cdn.example.com/video/"
KEY_URL = BASE_URL + "key.bin"
CONTENTS = [b"first segment", b"second segment", b"third segment", b"fourth segment"]


def plain_segments(requests_mock, contents=CONTENTS):
    segments = []
    for index, content in enumerate(contents):
        url = "{0}seg{1}.ts".format(BASE_URL, index)
        requests_mock.get(url, content=content)
        segments.append(Segment(url, NO_ENCRYPTION, index))
    return segments


class TestOutputPath:
    def test_free_path(self, tmp_path):
        filename = str(tmp_path / "video.ts")
        assert get_output_path(filename) == filename

    def test_existing_path(self, tmp_path):
        (tmp_path / "video.ts").touch()
        (tmp_path / "video_.ts").touch()

        filename = get_output_path(str(tmp_path / "video.ts"))

        assert filename == str(tmp_path / "video__.ts")
        assert not os.path.exists(filename)

    def test_no_extension(self, tmp_path):
        (tmp_path / "video").touch()
        assert get_output_path(str(tmp_path / "video")) == str(tmp_path / "video_")

    def test_bounded(self, monkeypatch, tmp_path):
        monkeypatch.setattr(hls_dl.os.path, "exists", lambda path: True)
        with pytest.raises(OutputPathException):
            get_output_path(str(tmp_path / "video.ts"))


class TestDownloadHls:
    def test_plain_segments(self, requests_mock, session, tmp_path):
        filename = tmp_path / "out.ts"
        segments = plain_segments(requests_mock, CONTENTS[:3])

        assert download_hls(session, segments, str(filename), CryptoContext(session))
        assert filename.read_bytes() == b"first segmentsecond segmentthird segment"

    def test_progress(self, requests_mock, session, tmp_path):
        calls = []
        segments = plain_segments(requests_mock)

        download_hls(session, segments, str(tmp_path / "out.ts"), CryptoContext(session),
                     lambda current, total: calls.append((current, total)))

        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_key_rotation(self, requests_mock, session, tmp_path):
        requests_mock.get(KEY_URL, content=KEY)
        key = KeyDirective(METHOD_AES_128, KEY_URL, IV)
        requests_mock.get(BASE_URL + "seg0.ts", content=encrypt(CONTENTS[0]))
        requests_mock.get(BASE_URL + "seg1.ts", content=encrypt(CONTENTS[1]))
        requests_mock.get(BASE_URL + "seg2.ts", content=CONTENTS[2])
        segments = [
            Segment(BASE_URL + "seg0.ts", key, 0),
            Segment(BASE_URL + "seg1.ts", key, 1),
            Segment(BASE_URL + "seg2.ts", NO_ENCRYPTION, 2),
        ]
        filename = tmp_path / "out.ts"

        download_hls(session, segments, str(filename), CryptoContext(session))

        assert filename.read_bytes() == b"".join(CONTENTS[:3])
        assert requests_mock.request_history[0].url == KEY_URL
        assert len([request for request in requests_mock.request_history if request.url == KEY_URL]) == 1

    def test_final_segment_failure_is_tolerated(self, requests_mock, session, tmp_path):
        segments = plain_segments(requests_mock)
        requests_mock.get(segments[3].url, exc=requests.exceptions.ConnectionError)
        calls = []
        filename = tmp_path / "out.ts"

        assert download_hls(session, segments, str(filename), CryptoContext(session),
                            lambda current, total: calls.append(current))

        assert filename.read_bytes() == b"".join(CONTENTS[:3])
        assert calls == [1, 2, 3]

    def test_final_segment_bad_padding_is_tolerated(self, requests_mock, session, tmp_path):
        requests_mock.get(KEY_URL, content=KEY)
        key = KeyDirective(METHOD_AES_128, KEY_URL, IV)
        segments = plain_segments(requests_mock, CONTENTS[:2])
        requests_mock.get(BASE_URL + "seg2.ts", content=encrypt(CONTENTS[2])[:-1])
        segments.append(Segment(BASE_URL + "seg2.ts", key, 2))
        filename = tmp_path / "out.ts"

        download_hls(session, segments, str(filename), CryptoContext(session))

        assert filename.read_bytes() == b"".join(CONTENTS[:2])

    @pytest.mark.parametrize("failing_index", [1, 2])
    def test_earlier_segment_failure_is_fatal(self, requests_mock, session, tmp_path, failing_index):
        segments = plain_segments(requests_mock)
        requests_mock.get(segments[failing_index].url, status_code=404)
        filename = tmp_path / "out.ts"

        with pytest.raises(SegmentFetchException) as exc_info:
            download_hls(session, segments, str(filename), CryptoContext(session))

        assert "segment {0} / 4".format(failing_index + 1) in str(exc_info.value)
        assert filename.read_bytes() == b"".join(CONTENTS[:failing_index])
        assert not any(request.url == segments[3].url for request in requests_mock.request_history)

    def test_partial_segment_is_truncated(self, requests_mock, session, tmp_path):
        requests_mock.get(KEY_URL, content=KEY)
        key = KeyDirective(METHOD_AES_128, KEY_URL, IV)
        segments = plain_segments(requests_mock)
        broken = encrypt(b"x" * 1000)[:-3]
        requests_mock.get(BASE_URL + "seg1.ts", content=broken)
        segments[1] = Segment(BASE_URL + "seg1.ts", key, 1)
        filename = tmp_path / "out.ts"

        with pytest.raises(SegmentFetchException):
            download_hls(session, segments, str(filename), CryptoContext(session))

        assert filename.read_bytes() == CONTENTS[0]

    def test_key_failure_is_fatal_for_final_segment(self, requests_mock, session, tmp_path):
        requests_mock.get(KEY_URL, status_code=500)
        segments = plain_segments(requests_mock, CONTENTS[:2])
        segments[1] = Segment(segments[1].url, KeyDirective(METHOD_AES_128, KEY_URL), 1)

        with pytest.raises(KeyFetchException):
            download_hls(session, segments, str(tmp_path / "out.ts"), CryptoContext(session))
