"""Artifact persistence."""

from .artifacts import ArtifactStore

__all__ = ["ArtifactStore"]
