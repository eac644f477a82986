"""Domain layer: canonical documents, search value objects and the error taxonomy."""
