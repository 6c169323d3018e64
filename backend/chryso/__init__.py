"""Chryso Forms data retention service."""

__version__ = "0.1.0"
