"""Content-side helpers: topic naming and item import."""
