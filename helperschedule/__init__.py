"""
Helper availability and recurring scheduling engine.
"""

__version__ = "0.1.0"
