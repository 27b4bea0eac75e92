# ABOUTME: Package initialization for the foxflow FOXML to OCFL migration tool
# ABOUTME: Defines version and sets up package-level logging configuration
"""foxflow - Migrate FOXML repository objects into OCFL archive groups"""

__version__ = "0.1.0"

# Set up logging for the package
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
