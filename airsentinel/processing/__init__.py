"""Detection layer: per-aircraft history, rules and the batch orchestrator."""
