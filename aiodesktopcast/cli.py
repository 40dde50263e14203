"""Command line entry point: capture the desktop, serve it and cast it."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from .config import (
    DEFAULT_MOUNT_PATH,
    DEFAULT_PORT,
    DEFAULT_TARGET_MODEL,
    DesktopCastConfig,
    default_parallelism,
)
from .errors import DesktopCastError
from .models.core import Resolution, StreamConfig
from .models.types import DisconnectPolicy, DiscoveryPolicy
from .renderer.caster import RendererCaster
from .server.session import StreamServer

__all__ = ["main"]

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logging(level: str) -> None:
    """Configure the root logger."""
    logging.basicConfig(
        level=LOG_LEVELS.get(level, logging.INFO),
        format="[%(levelname)s] [%(name)s] %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aiodesktopcast",
        description="Stream the desktop over RTSP and play it on a UPnP/DLNA renderer",
    )
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="RTSP port to listen on")
    parser.add_argument("--mount", default=DEFAULT_MOUNT_PATH, help="RTSP mount path")
    parser.add_argument("--width", type=int, default=1920, help="Target video width")
    parser.add_argument("--height", type=int, default=1080, help="Target video height")
    parser.add_argument("--no-scale", action="store_true", help="Keep the captured resolution")
    parser.add_argument(
        "--threads",
        type=int,
        default=default_parallelism(),
        help="Threads for scaling and encoding (default: CPU count)",
    )
    parser.add_argument(
        "--discovery",
        choices=[policy.value for policy in DiscoveryPolicy],
        default=DiscoveryPolicy.SCAN_ALL.value,
        help="Renderer selection policy",
    )
    parser.add_argument(
        "--target-model",
        default=DEFAULT_TARGET_MODEL,
        help="Model description matched by the named-target policy",
    )
    parser.add_argument(
        "--discovery-timeout", type=float, default=10.0, help="Seconds to scan for renderers"
    )
    parser.add_argument(
        "--disconnect",
        choices=[policy.value for policy in DisconnectPolicy],
        default=DisconnectPolicy.ANY_CLIENT.value,
        help="Which client disconnect ends the session",
    )
    parser.add_argument("--no-mdns", action="store_true", help="Do not advertise via mDNS")
    parser.add_argument(
        "--log-level", default="info", type=str.lower, choices=list(LOG_LEVELS), help="Logging level"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> DesktopCastConfig:
    """Build the run configuration from parsed arguments."""
    resolution = None if args.no_scale else Resolution(width=args.width, height=args.height)
    return DesktopCastConfig(
        stream=StreamConfig(target_resolution=resolution, parallelism=args.threads),
        port=args.port,
        mount_path=args.mount,
        disconnect_policy=DisconnectPolicy(args.disconnect),
        discovery_policy=DiscoveryPolicy(args.discovery),
        discovery_timeout=args.discovery_timeout,
        target_model=args.target_model,
        advertise_mdns=not args.no_mdns,
    )


async def run_desktop_cast(
    config: DesktopCastConfig,
    *,
    stream_server: StreamServer | None = None,
    caster: RendererCaster | None = None,
) -> None:
    """
    Start the stream, cast it while it is served and wait for the session to end.

    The endpoint exists before discovery starts, and the session keeps serving
    while the discovery scan runs.

    Args:
        config: Run configuration.
        stream_server: Server to use. Defaults to a :class:`StreamServer` for ``config``.
        caster: Caster to use. Defaults to a :class:`RendererCaster` for ``config``.
    """
    if stream_server is None:
        stream_server = StreamServer(config)
    if caster is None:
        caster = RendererCaster(
            deadline=config.discovery_timeout,
            title=config.media_title,
            target_model=config.target_model,
        )
    try:
        endpoint = await stream_server.start()
        run_task = asyncio.create_task(stream_server.async_run())
        try:
            try:
                await caster.cast(endpoint.url, caster.strategy_for(config.discovery_policy))
            finally:
                await caster.close()
            await run_task
        finally:
            if not run_task.done():
                run_task.cancel()
                await asyncio.gather(run_task, return_exceptions=True)
    finally:
        await stream_server.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run aiodesktopcast and return the process exit status."""
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        config = config_from_args(args)
        asyncio.run(run_desktop_cast(config))
    except (DesktopCastError, ValueError) as err:
        logger.error("%s", err)
        return 1
    except ImportError as err:
        logger.error(
            "GStreamer bindings are not available (%s), install aiodesktopcast[gstreamer]", err
        )
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
