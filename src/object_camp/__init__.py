"""ObjectCamp: groups extracted photo subjects into persistent entities."""

__version__ = "0.1.0"
