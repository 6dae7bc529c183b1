"""Compile, copy, serve and watch loop for front-end projects."""

__version__ = "0.1.0"
