"""
Event harvester: scheduled multi-source event acquisition.
"""

__version__ = "0.1.0"
