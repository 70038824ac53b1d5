"""Permit2 transfer validation and OFT bridge relaying."""

from importlib import metadata


def __getattr__(name: str) -> str:
    """Expose the package version via ``permit_relay.__version__``."""
    if name == "__version__":
        try:
            return metadata.version("permit-relay")
        except metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
