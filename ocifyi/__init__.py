"""Inspect the cosign signatures and attestations attached to container images

No signature is verified: ocifyi reports what is attached, not whether it is valid.
"""
from ocifyi import oci
from ocifyi.oci.reference import ImageReference
from ocifyi.walker import (
    Kind,
    LayerRecord,
    WalkResult,
    get_attestations,
    get_signatures,
    walk,
)

__all__ = [
    "ImageReference",
    "Kind",
    "LayerRecord",
    "WalkResult",
    "get_attestations",
    "get_signatures",
    "oci",
    "walk",
]
