"""UI module - HTTP and push-stream surface."""

from ui.web_server import app as web_app, set_feed, run_server

__all__ = [
    "web_app",     # FastAPI web app
    "set_feed",    # Share the feed with the web server
    "run_server",  # Run web server (blocking)
]
