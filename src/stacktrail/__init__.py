"""StackTrail: error tracking with fingerprint grouping and source-map symbolication."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stacktrail")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from stacktrail.core import Issue, StackTrailDB

__all__ = ["Issue", "StackTrailDB", "__version__"]
