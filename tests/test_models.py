from __future__ import annotations

import pytest

from aiodesktopcast.config import DesktopCastConfig
from aiodesktopcast.models.core import (
    CaptureSourceDescriptor,
    CastReport,
    Endpoint,
    Resolution,
    StreamConfig,
)
from aiodesktopcast.models.types import CaptureBackend, DisconnectPolicy


def test_endpoint_url() -> None:
    assert Endpoint(host="10.0.0.5", port=8554).url == "rtsp://10.0.0.5:8554/"
    assert Endpoint(host="10.0.0.5", port=9000, path="/desk").url == "rtsp://10.0.0.5:9000/desk"


def test_descriptor_serializes_backend_by_value() -> None:
    descriptor = CaptureSourceDescriptor(
        backend=CaptureBackend.DISPLAY_SERVER_FULL_SCREEN, description="ximagesrc"
    )
    data = descriptor.to_dict()
    assert data["description"] == "ximagesrc"
    assert CaptureSourceDescriptor.from_dict(data) == descriptor


def test_stream_config_from_json() -> None:
    config = StreamConfig.from_json('{"target_resolution": {"width": 1280, "height": 720}}')
    assert config.target_resolution == Resolution(1280, 720)
    assert config.parallelism == 1


def test_cast_report_starts_empty() -> None:
    report = CastReport()
    assert report.attempted == []
    assert report.succeeded == []
    assert not report.timed_out
    # Separate reports never share lists
    report.attempted.append("http://a")
    assert CastReport().attempted == []


def test_desktop_cast_config_defaults() -> None:
    config = DesktopCastConfig()
    assert config.port == 8554
    assert config.latency_ms == 1500
    assert config.retransmission_ms == 2500
    assert config.disconnect_policy is DisconnectPolicy.ANY_CLIENT
    assert config.stream.target_resolution is None
    assert config.stream.parallelism >= 1


@pytest.mark.parametrize(
    "kwargs",
    [{"port": 0}, {"port": 70000}, {"mount_path": "desk"}, {"discovery_timeout": 0}],
)
def test_desktop_cast_config_rejects_invalid_values(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        DesktopCastConfig(**kwargs)
