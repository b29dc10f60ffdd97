"""Route handlers for the worker host API."""
