"""Relay CMS: a flat-file content management system."""

__version__ = "0.1.0"
