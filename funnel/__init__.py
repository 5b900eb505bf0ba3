"""Torrent download manager with persistent state, a local JSON API and cluster support."""

__version__ = "0.1.0"