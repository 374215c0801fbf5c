"""Node queries, dependency checks and template materialization."""
