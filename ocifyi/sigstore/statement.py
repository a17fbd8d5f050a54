"""In-toto statement headers from DSSE envelopes

Cosign stores attestations as a DSSE envelope whose base64 payload is an
in-toto statement. Only the statement header is read here, the predicate
is never modelled: it is produced by the builder and can be large.

ref: https://github.com/secure-systems-lab/dsse/blob/master/envelope.md
ref: https://github.com/in-toto/attestation/blob/main/spec/v1/statement.md
"""
import binascii
import logging
from base64 import b64decode
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ocifyi.exceptions import DecodeError
from ocifyi.oci.client import Client
from ocifyi.oci.manifest import Layer
from ocifyi.oci.reference import ImageReference

logger = logging.getLogger(__name__)

DSSE_MEDIA_TYPE = "application/vnd.dsse.envelope.v1+json"
IN_TOTO_PAYLOAD_TYPE = "application/vnd.in-toto+json"


class Signature(BaseModel):
    keyid: str | None = None
    sig: str


class Envelope(BaseModel):
    payloadType: str
    payload: str
    signatures: list[Signature] = []


class Subject(BaseModel):
    name: str | None = None
    digest: dict[str, str] = {}


class StatementHeader(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str = Field(default="", alias="_type")
    predicateType: str = ""
    subject: list[Subject] = []


def read_statement_header(chunks: Iterable[bytes]) -> StatementHeader | None:
    """Decode the in-toto statement header from a DSSE envelope

    Returns None when the envelope does not carry an in-toto statement.
    """
    try:
        envelope = Envelope.model_validate_json(b"".join(chunks))
    except ValidationError as e:
        raise DecodeError(f"error decoding dsse envelope: {e}") from e
    if envelope.payloadType != IN_TOTO_PAYLOAD_TYPE:
        logger.debug("Skipping dsse envelope of type %s", envelope.payloadType)
        return None

    try:
        payload = b64decode(envelope.payload, validate=True)
    except binascii.Error as e:
        raise DecodeError(f"error decoding dsse payload: {e}") from e
    try:
        return StatementHeader.model_validate_json(payload)
    except ValidationError as e:
        raise DecodeError(f"error decoding intoto statement: {e}") from e


def fetch_statement_header(
    ref: ImageReference, layer: Layer, client: Client
) -> StatementHeader | None:
    """Read the statement header of a DSSE layer in the repository of `ref`"""
    with layer.open(ref=ref, client=client) as chunks:
        return read_statement_header(chunks)
