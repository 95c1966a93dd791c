"""Square position and key-frame file sharing between a server and clients over TCP."""

__version__ = "0.1.0"
__all__ = ["protocol", "server", "client"]