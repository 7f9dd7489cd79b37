"""selfpack.

A small build utility that bundles a project directory and its entry point
into a single, self-executing ``.pyz`` archive.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
