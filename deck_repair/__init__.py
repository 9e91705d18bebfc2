"""Reimage and repair dual-slot SteamOS devices from a live installer."""

from .__version__ import __version__

__all__ = ["__version__"]
