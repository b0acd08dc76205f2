"""
npm-source

Fetch, list and inspect the source of published npm packages, search the
registry, and serve a cached digest of popular packages.
"""

__version__ = "1.0.0"
