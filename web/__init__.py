"""HTTP surface for the bracket engine."""
