"""Infrastructure helpers: retry policies, shutdown coordination and runners."""
