"""Tests for provider payload normalization.

Every vendor shape must land on running / succeeded / failed with outputs as plain URLs.
"""

import pytest

from artifex.services.providers.base import ImageInput, ProviderStatus
from artifex.services.providers.normalization import (
    extract_outputs,
    map_status,
    normalize_status,
    unwrap,
)


@pytest.mark.parametrize(
    "raw_status,expected",
    [
        ("COMPLETED", ProviderStatus.SUCCEEDED),
        ("succeeded", ProviderStatus.SUCCEEDED),
        ("IN_PROGRESS", ProviderStatus.RUNNING),
        ("in-progress", ProviderStatus.RUNNING),
        ("starting", ProviderStatus.RUNNING),
        ("CREATED", ProviderStatus.RUNNING),
        ("FAILED", ProviderStatus.FAILED),
        ("canceled", ProviderStatus.FAILED),
        ("mystery", None),
        (None, None),
    ],
)
def test_map_status(raw_status, expected):
    assert map_status(raw_status) == expected


def test_unwrap_nested_envelopes():
    assert unwrap({"data": {"result": {"status": "done"}}}) == {"status": "done"}
    assert unwrap("not a mapping") == {}


def test_freepik_completed_payload():
    raw = {
        "data": {
            "task_id": "abc-123",
            "status": "COMPLETED",
            "generated": ["https://cdn.freepik.test/1.png", "https://cdn.freepik.test/2.png"],
        }
    }

    status = normalize_status(raw)

    assert status.status is ProviderStatus.SUCCEEDED
    assert status.task_id == "abc-123"
    assert status.outputs == [
        "https://cdn.freepik.test/1.png",
        "https://cdn.freepik.test/2.png",
    ]
    assert status.error is None


def test_outputs_given_as_objects():
    raw = {"status": "success", "images": [{"url": "https://x.test/a.png"}, {"uri": "https://x.test/b.png"}]}

    assert normalize_status(raw).outputs == ["https://x.test/a.png", "https://x.test/b.png"]


def test_single_output_string():
    assert extract_outputs({"output": "https://x.test/video.mp4"}) == ["https://x.test/video.mp4"]
    assert extract_outputs({"video_url": "https://x.test/v.mp4"}) == ["https://x.test/v.mp4"]


def test_synchronous_image_url_without_status_is_success():
    status = normalize_status({"data": {"image_url": "https://x.test/sync.png"}})

    assert status.status is ProviderStatus.SUCCEEDED
    assert status.outputs == ["https://x.test/sync.png"]
    assert status.task_id is None


def test_failed_payload_keeps_vendor_message_verbatim():
    raw = {"data": {"task_id": "t-1", "status": "FAILED", "error": {"message": "safety violation"}}}

    status = normalize_status(raw)

    assert status.status is ProviderStatus.FAILED
    assert status.error == "safety violation"
    assert status.outputs == []


def test_unknown_status_without_outputs_or_error_is_running():
    status = normalize_status({"id": 77, "status": "warming_up"})

    assert status.status is ProviderStatus.RUNNING
    assert status.task_id == "77"


def test_error_without_status_is_failure():
    assert normalize_status({"detail": "model crashed"}).status is ProviderStatus.FAILED


def test_running_status_drops_partial_outputs():
    status = normalize_status({"status": "processing", "output": ["https://x.test/partial.png"]})

    assert status.status is ProviderStatus.RUNNING
    assert status.outputs == []


class TestImageInput:
    def test_url_input(self):
        image = ImageInput(url="https://x.test/in.png")

        assert not image.is_inline
        assert image.summary() == {"url": "https://x.test/in.png"}

    def test_inline_data_uri(self):
        image = ImageInput(data="data:image/jpeg;base64,aGVsbG8=")

        assert image.is_inline
        assert image.content == b"hello"
        assert image.mime_type == "image/jpeg"
        assert image.summary() == {"inline_bytes": 5, "mime_type": "image/jpeg"}

    @pytest.mark.parametrize(
        "values",
        [
            {},
            {"url": "https://x.test/a.png", "data": "aGVsbG8="},
            {"url": "ftp://x.test/a.png"},
            {"data": "%%% not base64 %%%"},
        ],
    )
    def test_invalid_inputs_rejected(self, values):
        with pytest.raises(ValueError):
            ImageInput(**values)
