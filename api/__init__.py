"""Command-line tools for talking to the orchestrator."""
