"""Network probing engine."""
