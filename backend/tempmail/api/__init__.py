"""HTTP and WebSocket surface: thin wrappers over the directory and registry."""
