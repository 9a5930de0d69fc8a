# omexmlfile/__main__.py

"""Omexmlfile package command line script."""

import sys

from .omexmlfile import main

sys.exit(main())
