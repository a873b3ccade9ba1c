"""Version 1 of the Honua REST API."""
