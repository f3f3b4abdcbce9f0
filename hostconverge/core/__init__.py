"""Core engine: models, plan loading, facts, convergence, persistence."""
