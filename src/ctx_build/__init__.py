"""ctx-build: incremental, crash-safe compilation of .context rule sets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ctx-build")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = ["__version__"]
