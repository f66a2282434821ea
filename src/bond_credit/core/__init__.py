"""Core records, the in-memory store and the platform object."""
