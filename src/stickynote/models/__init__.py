"""Domain models for the Sticky Note engine."""
