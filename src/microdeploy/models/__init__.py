"""Pydantic models for releases, stemcells, manifests and deployment state."""
