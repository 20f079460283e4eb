"""HTTP API serving one agent loop per session."""
