"""Adapters connecting the node agent to HTTP, Redis, subprocess tools and files."""
