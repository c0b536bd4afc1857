"""Application entry point for the peer quiz server."""

from __future__ import annotations

import argparse
import socket

from peer_quiz.config.settings import get_settings
from peer_quiz.core.room_manager import RoomManager
from peer_quiz.server.api_server import run_api_server
from peer_quiz.server.media_uploads import MediaStore
from peer_quiz.storage.archive import RoomArchive
from peer_quiz.storage.document_store import JsonFileDocumentStore
from peer_quiz.utils.logging_config import configure_logging


def _determine_client_url(port: int) -> str:
    """Best-effort determination of the local IP for the client-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classroom quiz and peer-evaluation server.")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: PEER_QUIZ_PORT or 3009).")
    return parser.parse_args()


def main() -> None:
    """Initialize logging, wire the room manager and serve the API."""
    args = _parse_args()
    settings = get_settings()
    port = args.port or settings.port

    logger = configure_logging(settings.log_level)
    logger.info("Starting peer quiz server…")

    archive = RoomArchive(JsonFileDocumentStore(settings.data_dir))
    room_manager = RoomManager(archive)
    media_store = MediaStore(settings.uploads_dir, settings.max_upload_mb * 1024 * 1024)
    logger.info("Data directory: %s", settings.data_dir.resolve())
    logger.info("Clients connect at %s", _determine_client_url(port))

    run_api_server(room_manager, media_store, host=settings.host, port=port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
