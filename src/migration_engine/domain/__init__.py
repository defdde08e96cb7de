"""Domain layer - schema model, migration steps and the core services."""
