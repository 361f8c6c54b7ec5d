"""Domain models: the certificate entity and typed deploy actions."""
