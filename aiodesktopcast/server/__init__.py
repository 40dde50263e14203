"""Pipeline composition and the RTSP streaming session."""
