"""Cache orchestration engine: fingerprints, keys, restore, save, state."""
