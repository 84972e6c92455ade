"""Small helpers shared by the observers."""
