"""setlistsync - ingestion and reconciliation pipeline for a setlist voting app."""

__version__ = "0.1.0"
