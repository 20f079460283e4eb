"""Agent loop, completion providers and tool execution."""
