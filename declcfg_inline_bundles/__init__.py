"""Inline bundle image manifests into declarative operator catalogs."""

__version__ = "1.0.0"
