"""
Formulary - release descriptors for prebuilt binaries.

Describe where a release's binaries live, check them, render the Homebrew
formula, and install the right one for this machine.
"""

from importlib.metadata import version as _version

__version__ = _version("formulary")
