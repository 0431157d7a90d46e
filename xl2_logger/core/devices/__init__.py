"""Serial port discovery and device classification."""
