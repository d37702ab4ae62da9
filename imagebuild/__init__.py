"""Image-build automation built on the `stepkit` step runner."""

__version__ = "0.1.0"
