"""Session validation and site resolution."""
