"""Warden - run scripts as services under the host's native service manager."""

__version__ = "0.1.0"
