"""Background upload pipeline: durable, owner-scoped upload queue."""

__version__ = "0.1.0"
