"""Version string for Prunarr, taken from the installed distribution metadata."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("prunarr")
except PackageNotFoundError:
    # Running from a source checkout without `pip install -e .`
    __version__ = "0.0.0-dev"
