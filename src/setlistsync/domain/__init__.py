"""Domain layer: entities, upstream DTOs, ports and exceptions."""
