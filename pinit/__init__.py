"""Unit files, a service registry, launch wrappers and a control utility for a small init system."""

__version__ = "0.1.0"