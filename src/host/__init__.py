"""Process wiring and the interactive command loop."""
