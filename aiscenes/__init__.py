"""AI Scenes node service: hybrid ltree/JSON resolver and n8n gateway."""

__version__ = "0.1.0"
