"""Gateway components."""
