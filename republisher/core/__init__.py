"""Upstream access, caching and refresh primitives."""
