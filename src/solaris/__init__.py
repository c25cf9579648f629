"""Solaris: battery-aware relay coordination for a small solar installation."""

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("solaris")
except Exception:
    __version__ = "dev"
