"""Async helpers shared by ingestion and retrieval."""

from .parallel import process_in_batches, run_parallel_phases

__all__ = ["process_in_batches", "run_parallel_phases"]
