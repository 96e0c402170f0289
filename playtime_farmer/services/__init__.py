"""Service layer for Playtime Farmer."""
