import logging

from cryptography import x509

from ocifyi.exceptions import ParseError
from ocifyi.sigstore.extensions import ProvenanceExtensions, decode_extensions

logger = logging.getLogger(__name__)


def load_certificate(pem: str | bytes) -> x509.Certificate:
    """Load a PEM encoded certificate"""
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError as e:
        raise ParseError(f"error parsing certificate: {e}") from e


def raw_extensions(cert: x509.Certificate) -> list[tuple[str, bytes]]:
    """Return the (dotted OID, raw value) pairs of the custom extensions of `cert`

    Extensions cryptography knows about (SAN, key usage, ...) are not included.
    """
    try:
        extensions = cert.extensions
    except ValueError as e:
        raise ParseError(f"error parsing extensions: {e}") from e
    return [
        (extension.oid.dotted_string, extension.value.value)
        for extension in extensions
        if isinstance(extension.value, x509.UnrecognizedExtension)
    ]


def unpack_certificate(
    pem: str | bytes,
) -> tuple[x509.Certificate, ProvenanceExtensions]:
    """Load a certificate and decode its Fulcio extensions

    A certificate that can not be loaded raises ParseError.
    Extensions that can not be decoded are logged and left empty,
    the certificate itself is still returned.
    """
    cert = load_certificate(pem)
    try:
        return cert, decode_extensions(raw_extensions(cert))
    except ParseError as e:
        logger.warning("Ignoring extensions of %s: %s", cert.subject.rfc4514_string(), e)
        return cert, ProvenanceExtensions()


def subject_alt_name(cert: x509.Certificate | None) -> str:
    """Return the e-mail and URI subject alternative names of `cert`, space separated"""
    if cert is None:
        return ""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except (x509.ExtensionNotFound, ValueError):
        return ""
    names = san.get_values_for_type(x509.RFC822Name)
    names += san.get_values_for_type(x509.UniformResourceIdentifier)
    return " ".join(names)
