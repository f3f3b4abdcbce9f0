"""Click sub-command groups registered by hostconverge.main."""
