"""Core functionality: configuration, logging, exceptions and infrastructure."""
