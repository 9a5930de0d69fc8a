# omexmlfile/__init__.py

from .omexmlfile import *
from .omexmlfile import __all__, __doc__, __version__, main

# constants are repeated for documentation

__version__ = __version__
"""Omexmlfile version string."""
