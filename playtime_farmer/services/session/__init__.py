"""Session handling: provider interface, token cache and the account orchestrator."""
