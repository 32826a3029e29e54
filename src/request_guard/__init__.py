"""Request Guard: request input security and authentication risk engine."""

import logging

__version__ = "0.1.0"

# Library default: stay silent until the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())
