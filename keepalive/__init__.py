"""Keep hosted apps awake by pinging them over HTTP and in a headless browser."""

__version__ = "0.1.0"
