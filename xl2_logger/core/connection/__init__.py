"""Serial links, device sessions and connection orchestration."""
