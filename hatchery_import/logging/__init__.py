"""Application logging and the JSON-lines error log."""
