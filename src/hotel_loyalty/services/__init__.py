"""Domain services for the loyalty engine."""
