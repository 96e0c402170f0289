"""Interactive console."""
