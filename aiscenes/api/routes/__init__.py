"""API route modules."""

from . import health, ltree, n8n, nodes, storyboard

__all__ = ["health", "ltree", "n8n", "nodes", "storyboard"]
