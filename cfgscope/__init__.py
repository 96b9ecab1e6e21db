"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cfgscope")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = ["__version__"]
