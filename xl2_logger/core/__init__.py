"""Core services: configuration, logging, events and errors."""
