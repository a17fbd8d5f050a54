"""Fulcio certificate extensions

Fulcio embeds the identity of the workload that requested a signing
certificate as custom X.509 extensions under the sigstore OID arc
1.3.6.1.4.1.57264.1. Two generations of these extensions exist:

* the deprecated GitHub specific extensions (.1 through .6) carry the
  value as raw bytes,
* the current extensions (.8 and up) carry a DER encoded string.

ref: https://github.com/sigstore/fulcio/blob/main/docs/oid-info.md
"""
import logging
import string
from dataclasses import dataclass, fields
from typing import Callable, Iterable

from ocifyi.exceptions import ParseError

logger = logging.getLogger(__name__)

SIGSTORE_ARC = "1.3.6.1.4.1.57264.1"

GITHUB = "https://github.com"

# ASN.1 universal tags for the string types a DER string may use
UTF8_STRING = 0x0C
NUMERIC_STRING = 0x12
PRINTABLE_STRING = 0x13
T61_STRING = 0x14
IA5_STRING = 0x16
BMP_STRING = 0x1E

PRINTABLE_CHARACTERS = frozenset(string.ascii_letters + string.digits + " '()+,-./:=?")
NUMERIC_CHARACTERS = frozenset(string.digits + " ")


@dataclass(frozen=True, slots=True)
class ProvenanceExtensions:
    """Build provenance decoded from the Fulcio extensions of a certificate

    Fields the certificate does not carry are empty strings.
    """

    issuer: str = ""

    # Deprecated GitHub specific extensions
    github_workflow_trigger: str = ""
    github_workflow_sha: str = ""
    github_workflow_name: str = ""
    github_workflow_repository: str = ""
    github_workflow_ref: str = ""

    build_signer_uri: str = ""
    build_signer_digest: str = ""
    runner_environment: str = ""
    source_repository_uri: str = ""
    source_repository_digest: str = ""
    source_repository_ref: str = ""
    source_repository_identifier: str = ""
    source_repository_owner_uri: str = ""
    source_repository_owner_identifier: str = ""
    build_config_uri: str = ""
    build_config_digest: str = ""
    build_trigger: str = ""
    run_invocation_uri: str = ""
    source_repository_visibility_at_signing: str = ""

    def __bool__(self):
        return any(getattr(self, f.name) for f in fields(self))


def _read_length(value: bytes) -> tuple[int, int]:
    """Return the content length and the offset of the content of a DER TLV"""
    if len(value) < 2:
        raise ParseError("truncated DER value")
    first = value[1]
    if first < 0x80:
        return first, 2
    count = first & 0x7F
    if count == 0:
        raise ParseError("indefinite length is not allowed in DER")
    if count > 4 or len(value) < 2 + count:
        raise ParseError("truncated DER length")
    length = int.from_bytes(value[2 : 2 + count], "big")
    if value[2] == 0 or length < 0x80:
        raise ParseError("non-minimal DER length")
    return length, 2 + count


def _check_charset(text: str, allowed: frozenset, kind: str) -> str:
    if not set(text) <= allowed:
        raise ParseError(f"invalid character in {kind}")
    return text


def parse_der_string(value: bytes) -> str:
    """Decode a DER encoded ASN.1 string

    Accepts the string types Go's encoding/asn1 unmarshals into a string.
    Trailing data after the string is an error.
    """
    if not value:
        raise ParseError("empty DER value")
    tag = value[0]
    length, offset = _read_length(value)
    content = value[offset : offset + length]
    if len(content) != length:
        raise ParseError("truncated DER value")
    if offset + length != len(value):
        raise ParseError("trailing data after DER string")

    try:
        if tag == UTF8_STRING:
            return content.decode("utf-8")
        if tag == PRINTABLE_STRING:
            return _check_charset(content.decode("ascii"), PRINTABLE_CHARACTERS, "PrintableString")
        if tag == NUMERIC_STRING:
            return _check_charset(content.decode("ascii"), NUMERIC_CHARACTERS, "NumericString")
        if tag == IA5_STRING:
            return content.decode("ascii")
        if tag == T61_STRING:
            return content.decode("latin-1")
        if tag == BMP_STRING:
            return content.decode("utf-16-be")
    except UnicodeDecodeError as e:
        raise ParseError(f"invalid DER string content: {e}") from e
    raise ParseError(f"unexpected DER tag 0x{tag:02x}, expected a string")


def parse_raw_string(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


Decoder = Callable[[bytes], str]

EXTENSIONS: dict[str, tuple[str, Decoder]] = {
    # Deprecated
    f"{SIGSTORE_ARC}.1": ("issuer", parse_raw_string),
    f"{SIGSTORE_ARC}.2": ("github_workflow_trigger", parse_raw_string),
    f"{SIGSTORE_ARC}.3": ("github_workflow_sha", parse_raw_string),
    f"{SIGSTORE_ARC}.4": ("github_workflow_name", parse_raw_string),
    f"{SIGSTORE_ARC}.5": ("github_workflow_repository", parse_raw_string),
    f"{SIGSTORE_ARC}.6": ("github_workflow_ref", parse_raw_string),
    # .7 is the OtherName SAN type, not an extension
    f"{SIGSTORE_ARC}.8": ("issuer", parse_der_string),
    f"{SIGSTORE_ARC}.9": ("build_signer_uri", parse_der_string),
    f"{SIGSTORE_ARC}.10": ("build_signer_digest", parse_der_string),
    f"{SIGSTORE_ARC}.11": ("runner_environment", parse_der_string),
    f"{SIGSTORE_ARC}.12": ("source_repository_uri", parse_der_string),
    f"{SIGSTORE_ARC}.13": ("source_repository_digest", parse_der_string),
    f"{SIGSTORE_ARC}.14": ("source_repository_ref", parse_der_string),
    f"{SIGSTORE_ARC}.15": ("source_repository_identifier", parse_der_string),
    f"{SIGSTORE_ARC}.16": ("source_repository_owner_uri", parse_der_string),
    f"{SIGSTORE_ARC}.17": ("source_repository_owner_identifier", parse_der_string),
    f"{SIGSTORE_ARC}.18": ("build_config_uri", parse_der_string),
    f"{SIGSTORE_ARC}.19": ("build_config_digest", parse_der_string),
    f"{SIGSTORE_ARC}.20": ("build_trigger", parse_der_string),
    f"{SIGSTORE_ARC}.21": ("run_invocation_uri", parse_der_string),
    f"{SIGSTORE_ARC}.22": ("source_repository_visibility_at_signing", parse_der_string),
}


def decode_extensions(extensions: Iterable[tuple[str, bytes]]) -> ProvenanceExtensions:
    """Decode (dotted OID, raw value) pairs into ProvenanceExtensions

    Unknown OIDs are skipped.
    If two extensions map to the same field, the first one wins.
    """
    values: dict[str, str] = {}
    sources: dict[str, str] = {}
    for oid, raw in extensions:
        if oid not in EXTENSIONS:
            continue
        field, decode = EXTENSIONS[oid]
        try:
            value = decode(raw)
        except ParseError as e:
            raise ParseError(f"error parsing extension {oid}: {e}") from e
        if field in values:
            if values[field] != value:
                logger.warning(
                    "Extensions %s and %s disagree on %s, keeping %r",
                    sources[field],
                    oid,
                    field,
                    values[field],
                )
            continue
        values[field] = value
        sources[field] = oid
    return ProvenanceExtensions(**values)


def build_config_url(ext: ProvenanceExtensions) -> str:
    """Return a browsable URL for the build config of `ext`

    GitHub build configs are linked at the exact build config digest,
    anything else is returned as is.
    """
    if ext.build_config_uri.startswith(GITHUB):
        path = ext.build_config_uri.removeprefix(ext.source_repository_uri)
        path = path.split("@", 1)[0].strip("/")
        return f"{ext.source_repository_uri}/blob/{ext.build_config_digest}/{path}"
    return ext.build_config_uri
