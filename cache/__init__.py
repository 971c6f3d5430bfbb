"""cache/ -- Cache-aside identity resolution backed by Redis or a no-op store."""
