"""Shared infrastructure: errors, logging, archives, blobs and subprocesses."""
