"""RTSP streaming session serving the captured desktop."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from collections.abc import Callable, Sequence
from typing import Any

from zeroconf import IPVersion, NonUniqueNameException
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aiodesktopcast.capture.audio import AudioDeviceRegistry
from aiodesktopcast.capture.sources import (
    VideoSourceStrategy,
    default_video_strategies,
    resolve_audio_source,
    resolve_video_source,
)
from aiodesktopcast.config import DesktopCastConfig
from aiodesktopcast.errors import ConfigurationError, PipelineError
from aiodesktopcast.models.core import Endpoint, StreamConfig
from aiodesktopcast.models.types import DisconnectPolicy, ShutdownReason
from aiodesktopcast.util import get_gst, get_local_ip

from .pipeline import PipelineTopology, compose
from .retimestamp import register_retimestamp
from .shutdown import MainLoopLike, ShutdownRequest, ShutdownSignal

logger = logging.getLogger(__name__)

MDNS_SERVICE_TYPE = "_rtsp._tcp.local."
_BUS_WATCH_PRIORITY = 0  # GLib.PRIORITY_DEFAULT
_NSEC_PER_MSEC = 1_000_000


def _default_media_factory() -> Any:
    register_retimestamp()
    return get_gst().GstRtspServer.RTSPMediaFactory.new()


def _glib_dispatch(glib: Any) -> Callable[[Callable[[], None]], None]:
    """Run calls from the GLib main context so a quit() cannot be lost before run()."""

    def _dispatch(func: Callable[[], None]) -> None:
        def _once() -> bool:
            func()
            return False

        glib.idle_add(_once)

    return _dispatch


class StreamServer:
    """
    Serves the composed desktop pipeline over RTSP and owns its lifecycle.

    ``start`` resolves the capture sources, composes the pipeline and mounts
    it; ``run`` blocks until the session ends. The session ends when the
    pipeline reports a fatal error or, depending on the disconnect policy, when
    a client disconnects. Nothing restarts it.
    """

    _config: DesktopCastConfig
    _server: Any
    """The ``GstRtspServer.RTSPServer`` (or a stand-in with the same API)."""
    _main_loop: MainLoopLike
    """Control loop dispatching the server's sockets and all GLib callbacks."""
    _shutdown: ShutdownSignal
    """Shared by every watch callback; the worker thread is its sole consumer."""
    _clients: set[Any]
    """Currently connected client handles. Owned by the RTSP server, only observed here."""
    _endpoint: Endpoint | None
    _zc: AsyncZeroconf | None
    _mdns_service: AsyncServiceInfo | None

    def __init__(
        self,
        config: DesktopCastConfig | None = None,
        *,
        video_strategies: Sequence[VideoSourceStrategy] | None = None,
        audio_registry: AudioDeviceRegistry | None = None,
        server: Any = None,
        main_loop: MainLoopLike | None = None,
        media_factory: Callable[[], Any] | None = None,
    ) -> None:
        """
        Initialize the stream server.

        Args:
            config: Server settings. Defaults to :class:`DesktopCastConfig`.
            video_strategies: Video capture strategies in fallback order.
            audio_registry: Registry searched for the audio monitor device.
            server: RTSP server to mount on. Defaults to a new ``RTSPServer``.
            main_loop: Control loop to run. Defaults to a ``GLib.MainLoop`` on
                the default context; shutdown is then dispatched through it.
            media_factory: Creates the media factory for the mount point.
        """
        self._config = config or DesktopCastConfig()
        self._video_strategies = (
            list(video_strategies) if video_strategies is not None else default_video_strategies()
        )
        self._audio_registry = audio_registry
        self._server = server if server is not None else get_gst().GstRtspServer.RTSPServer.new()
        if main_loop is None:
            glib = get_gst().GLib
            self._main_loop = glib.MainLoop.new(None, False)
            self._shutdown = ShutdownSignal(self._main_loop, _glib_dispatch(glib))
        else:
            self._main_loop = main_loop
            self._shutdown = ShutdownSignal(main_loop)
        self._media_factory = media_factory or _default_media_factory
        self._clients = set()
        self._endpoint = None
        self._worker_error: BaseException | None = None
        self._zc = None
        self._mdns_service = None

        self._server.set_service(str(self._config.port))
        self._server.set_backlog(self._config.backlog)
        logger.debug("StreamServer initialized on port %d", self._config.port)

    @property
    def endpoint(self) -> Endpoint | None:
        """Where the stream is served, once started."""
        return self._endpoint

    @property
    def clients(self) -> set[Any]:
        """Client handles connected right now."""
        return self._clients

    @property
    def shutdown(self) -> ShutdownSignal:
        """The termination channel of this session."""
        return self._shutdown

    async def start(self, config: StreamConfig | None = None) -> Endpoint:
        """
        Resolve the sources, mount the pipeline and start listening.

        Args:
            config: Resize and encode settings. Defaults to the stream settings
                of the server configuration.

        Raises:
            ResolutionError: If no video or no audio source could be resolved.
            ConfigurationError: If the server rejects the mount or cannot listen.
        """
        if self._endpoint is not None:
            raise ConfigurationError("Stream server is already started")
        config = config or self._config.stream

        mounts = self._server.get_mount_points()
        if mounts is None:
            raise ConfigurationError("Failed to register rtsp server endpoint")

        video = await resolve_video_source(self._video_strategies)
        audio = await resolve_audio_source(self._audio_registry)
        topology = compose(video, audio, config)
        logger.debug("Composed pipeline: %s", topology.launch)

        mounts.add_factory(self._config.mount_path, self._create_factory(topology))
        self._server.connect("client-connected", self._on_client_connected)

        attach_id = self._server.attach(None)
        if not attach_id:
            raise ConfigurationError(f"Failed to listen on port {self._config.port}")

        host = get_local_ip()
        if host is None:
            raise ConfigurationError("No public ip address found")
        self._endpoint = Endpoint(host=host, port=self._config.port, path=self._config.mount_path)
        logger.info("Streaming desktop at %s", self._endpoint.url)

        if self._config.advertise_mdns:
            await self._start_mdns_advertising(self._endpoint)
        return self._endpoint

    def _create_factory(self, topology: PipelineTopology) -> Any:
        """Create a single-use media factory for the topology."""
        factory = self._media_factory()
        factory.set_launch(topology.launch)
        factory.set_shared(False)
        factory.set_latency(self._config.latency_ms)
        factory.set_retransmission_time(self._config.retransmission_ms * _NSEC_PER_MSEC)
        factory.set_stop_on_disconnect(True)
        factory.connect("media-constructed", self._on_media_constructed)
        return factory

    def _on_media_constructed(self, factory: Any, media: Any) -> None:
        """Watch the bus of each new media for fatal errors."""
        bus = media.get_element().get_bus()
        if bus is None:
            logger.warning("Constructed media has no bus, pipeline errors will go unnoticed")
            return
        bus.add_watch(_BUS_WATCH_PRIORITY, self._on_bus_message)

    def _on_bus_message(self, bus: Any, message: Any) -> bool:
        """Stop the session on the first pipeline error. Returns whether to keep watching."""
        if message.type != get_gst().Gst.MessageType.ERROR:
            return True
        error, debug = message.parse_error()
        logger.error("Pipeline failed: %s (%s)", error.message, debug)
        self._shutdown.send(ShutdownReason.PIPELINE_ERROR, error.message)
        return False

    def _on_client_connected(self, server: Any, client: Any) -> None:
        self._clients.add(client)
        logger.info("Client connected (%d connected)", len(self._clients))
        client.connect("closed", self._on_client_closed)

    def _on_client_closed(self, client: Any) -> None:
        self._clients.discard(client)
        logger.info("Client disconnected (%d connected)", len(self._clients))
        if self._config.disconnect_policy is DisconnectPolicy.ANY_CLIENT or not self._clients:
            self._shutdown.send(ShutdownReason.CLIENT_DISCONNECTED)

    def _run_loop(self) -> None:
        try:
            self._shutdown.run_until_received()
        except BaseException as err:  # noqa: BLE001
            self._worker_error = err

    def _spawn_worker(self) -> threading.Thread:
        if self._endpoint is None:
            raise ConfigurationError("StreamServer.start() must complete before running")
        worker = threading.Thread(target=self._run_loop, name="aiodesktopcast-mainloop", daemon=True)
        worker.start()
        return worker

    def _raise_for_shutdown(self) -> None:
        if self._worker_error is not None:
            raise PipelineError(f"StreamServer crashed: {self._worker_error!r}") from self._worker_error
        request: ShutdownRequest | None = self._shutdown.received
        if request is not None and request.reason is ShutdownReason.PIPELINE_ERROR:
            raise PipelineError(request.detail or "Pipeline failed")

    def run(self) -> None:
        """
        Run the control loop on a worker thread and block until the session ends.

        Raises:
            PipelineError: If the session ended because of a pipeline error.
        """
        self._spawn_worker().join()
        self._raise_for_shutdown()

    async def async_run(self) -> None:
        """
        Like :meth:`run`, but wait for the worker without blocking the event loop.

        Cancelling the call stops the control loop and waits for the worker
        before the cancellation propagates.
        """
        worker = self._spawn_worker()
        try:
            await asyncio.to_thread(worker.join)
        except asyncio.CancelledError:
            self._shutdown.send(ShutdownReason.CANCELLED)
            await asyncio.to_thread(worker.join)
            raise
        self._raise_for_shutdown()

    async def close(self) -> None:
        """Stop the control loop, withdraw the mDNS advertisement and release capture resources."""
        self._shutdown.send(ShutdownReason.CANCELLED)
        await self._stop_mdns()
        for strategy in self._video_strategies:
            strategy.close()

    async def _start_mdns_advertising(self, endpoint: Endpoint) -> None:
        """Advertise the RTSP endpoint via mDNS."""
        hostname = socket.gethostname().split(".")[0]
        self._zc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        info = AsyncServiceInfo(
            type_=MDNS_SERVICE_TYPE,
            name=f"aiodesktopcast-{hostname}.{MDNS_SERVICE_TYPE}",
            server=f"{hostname}.local.",
            parsed_addresses=[endpoint.host],
            port=endpoint.port,
            properties={"path": endpoint.path},
        )
        try:
            await self._zc.async_register_service(info)
            self._mdns_service = info
            logger.debug("mDNS advertising %s", endpoint.url)
        except NonUniqueNameException:
            logger.error("A desktop cast with identical name is already advertised on the network")

    async def _stop_mdns(self) -> None:
        """Stop mDNS advertising if active."""
        if self._zc is None:
            return
        try:
            if self._mdns_service is not None:
                await self._zc.async_unregister_service(self._mdns_service)
        finally:
            await self._zc.async_close()
            self._zc = None
            self._mdns_service = None
