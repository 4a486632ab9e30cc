"""Domain types and pure helpers shared by every storage backend."""
