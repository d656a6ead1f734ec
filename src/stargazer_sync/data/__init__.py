"""Data layer: models, services, repositories and storage."""
