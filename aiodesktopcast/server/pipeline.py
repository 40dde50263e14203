"""Composition of the capture-to-RTP pipeline description."""

from __future__ import annotations

from dataclasses import dataclass

from aiodesktopcast.models.core import CaptureSourceDescriptor, StreamConfig

VIDEO_PAYLOADER_NAME = "pay0"
VIDEO_PAYLOAD_TYPE = 96
AUDIO_PAYLOADER_NAME = "pay1"
AUDIO_PAYLOAD_TYPE = 97

# leaky=2 drops the oldest buffers once the queue is full
LEAKY_QUEUE = "queue leaky=2"


@dataclass(frozen=True)
class PipelineTopology:
    """Ordered stages of the video and audio chains.

    Once handed to the streaming server the topology belongs to the pipeline
    engine and is never changed.
    """

    video: tuple[str, ...]
    audio: tuple[str, ...]

    @property
    def launch(self) -> str:
        """Launch description for the media factory, wrapped in a bin."""
        video = " ! ".join(self.video)
        audio = " ! ".join(self.audio)
        return f"( {video} {audio} )"

    def __str__(self) -> str:
        return self.launch


def _video_chain(source: CaptureSourceDescriptor, config: StreamConfig) -> tuple[str, ...]:
    stages = [source.description, "queue"]
    if (resolution := config.target_resolution) is not None:
        stages += [
            f"videoscale n-threads={config.parallelism}",
            f"video/x-raw,width={resolution.width},height={resolution.height}",
        ]
    stages += [
        "videoconvert",
        LEAKY_QUEUE,
        f"x264enc threads={config.parallelism} tune=zerolatency speed-preset=2 bframes=0",
        "video/x-h264,profile=high",
        "queue",
        f"rtph264pay name={VIDEO_PAYLOADER_NAME} pt={VIDEO_PAYLOAD_TYPE}",
    ]
    return tuple(stages)


def _audio_chain(source: CaptureSourceDescriptor) -> tuple[str, ...]:
    return (
        source.description,
        "queue",
        "audioconvert",
        "audioresample",
        LEAKY_QUEUE,
        "vorbisenc",
        "queue",
        f"rtpvorbispay name={AUDIO_PAYLOADER_NAME} pt={AUDIO_PAYLOAD_TYPE}",
    )


def compose(
    video: CaptureSourceDescriptor,
    audio: CaptureSourceDescriptor,
    config: StreamConfig,
) -> PipelineTopology:
    """
    Build the pipeline topology for the resolved sources.

    Pure string composition; the pipeline engine validates it when the media
    factory parses it. Under encoder stalls the leaky queues drop old frames so
    the live feed stays fresh.
    """
    return PipelineTopology(video=_video_chain(video, config), audio=_audio_chain(audio))
