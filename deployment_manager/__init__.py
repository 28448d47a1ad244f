"""Deployment manager - lifecycle, manifests and backups of service deployments."""

__version__ = "1.0.0"

from .registry import Collaborators, ManagerRegistry

__all__ = ["Collaborators", "ManagerRegistry", "__version__"]
