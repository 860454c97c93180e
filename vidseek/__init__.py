"""vidseek: multi-modal video ingestion and hybrid timestamp search."""

__version__ = "0.1.0"
