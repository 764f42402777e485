"""Clock, result values, errors, ports and application state."""
