"""Beacon chain ingestor: polls a beacon node and mirrors its state into a store."""

__version__ = "0.1.0"
