"""Cross-cutting infrastructure: config, logging, retries, outcome types."""
