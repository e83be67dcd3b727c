"""Run checks against unpacked container image filesystems and bundles, and format the results."""

__version__ = "0.1.0"
__all__ = ["__version__"]