"""Read-only OCI registry access

This module provides a Python API for the subset of the OCI registry API
needed to inspect signature and attestation manifests.
"""
from .client import Client
from .manifest import Descriptor, Layer, Manifest
from .reference import ImageReference, companion_tag, parse_repository

__all__ = [
    "Client",
    "Descriptor",
    "ImageReference",
    "Layer",
    "Manifest",
    "companion_tag",
    "parse_repository",
]
