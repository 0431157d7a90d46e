"""Process entry point and component wiring."""
