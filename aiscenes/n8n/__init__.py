"""n8n workflow functions: lookup, execution and response envelopes."""
