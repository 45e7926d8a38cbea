"""
Ingest Module

Serial link ingestion from the external controller.
"""

from .serial_ingestor import IngestorState, SerialConfig, SerialIngestor, parse_frame

__all__ = [
    'IngestorState',
    'SerialConfig',
    'SerialIngestor',
    'parse_frame',
]
