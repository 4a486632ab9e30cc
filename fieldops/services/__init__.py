"""
Use cases that run on top of a storage backend.

Services receive the backend explicitly instead of reaching for a global.
"""
