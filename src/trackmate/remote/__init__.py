"""Remote document store bindings."""
