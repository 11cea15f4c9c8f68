"""hahaha - Kubernetes reconciliation controller that shuts down lingering sidecars."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hahaha")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
