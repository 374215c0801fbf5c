"""Hybrid ltree/JSON addressing over node content documents."""
