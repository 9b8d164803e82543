"""mailrag command-line interface."""
