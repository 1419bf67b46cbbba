"""chatrelay: multi-provider chat relay with in-memory conversations."""

__version__ = "0.1.0"
