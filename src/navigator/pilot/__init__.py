"""Per-node pilot agent."""
