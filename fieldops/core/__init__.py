"""
Core utilities shared across the field-operations backend.

This package hosts configuration helpers (env vars, paths, feature flags)
and cross-cutting services such as logging and password hashing.
Storage backends and routers depend on these primitives instead of reading
the environment or configuring loggers themselves.
"""
