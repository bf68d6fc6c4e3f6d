"""
pdpkit - Product detail page detection and reversible content patching.
"""

__version__ = "0.1.0"
