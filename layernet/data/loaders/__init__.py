"""Built-in dataset loaders.

Importing this package registers every built-in dataset.
"""

from . import iris, synthetic  # noqa: F401

__all__ = ["iris", "synthetic"]
