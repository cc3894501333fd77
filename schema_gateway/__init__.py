"""Version-translating API gateway built on JSONata transformations."""

__version__ = "0.1.0"
