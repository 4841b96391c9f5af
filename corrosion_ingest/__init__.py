"""Cross-site thickness measurement ingestion and corrosion-risk analytics."""

__version__ = "0.4.0"
