"""Queue-driven sourcing workflows and task delivery."""
