"""State management module for tracking applied resources."""

from .models import AppliedState, Reference, ResourceSpec, ref, resource_id
from .store import FileStateStore, InMemoryStateStore, StateStore

__all__ = [
    "AppliedState",
    "Reference",
    "ResourceSpec",
    "ref",
    "resource_id",
    "StateStore",
    "FileStateStore",
    "InMemoryStateStore",
]
