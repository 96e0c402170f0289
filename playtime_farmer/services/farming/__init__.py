"""Farming: playtime accounting, reconnect supervision and the fleet runner."""
