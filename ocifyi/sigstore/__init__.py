"""Decoders for the sigstore metadata cosign attaches to signature and attestation layers"""
