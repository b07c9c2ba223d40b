"""fintrack command line interface."""
