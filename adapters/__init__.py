"""
Site adapters. Every concrete :class:`harvester.interfaces.SiteAdapter`
defined in this package is discovered by :mod:`harvester.adapter_loader`.
"""
