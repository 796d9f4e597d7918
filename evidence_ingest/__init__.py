"""Evidence ingestion: container decoding, folder trees, message publishing."""

__version__ = "0.1.0"
