"""quoteflow core: configuration, data access and scheduling services."""
