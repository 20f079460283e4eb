"""Natural-language question answering over Elasticsearch with a tool-calling agent."""
