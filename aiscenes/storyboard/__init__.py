"""Storyboard job intake and dispatch to the start-job workflow."""
