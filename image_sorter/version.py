"""Version information for image-sorter."""

from importlib.metadata import PackageNotFoundError, version

DIST_NAME = "image-sorter"

try:
    __version__ = version(DIST_NAME)
except PackageNotFoundError:
    # Running from a source tree that was never installed
    __version__ = "0.0.0"
