import datetime
import json
from base64 import b64encode
from hashlib import sha256
from pathlib import Path

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ocifyi.oci.client import Client

TEST_DATA = Path(__file__).parent / "testdata"

REGISTRY = "registry.example.com"

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
SIMPLE_SIGNING = "application/vnd.dev.cosign.simplesigning.v1+json"
DSSE = "application/vnd.dsse.envelope.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"


@pytest.fixture
def testdata() -> Path:
    """Return the testdata dir for this module"""
    return TEST_DATA


def der_string(value: str, tag: int = 0x0C) -> bytes:
    """DER encode `value` as an ASN.1 string with universal `tag`"""
    content = value.encode("utf-16-be" if tag == 0x1E else "utf-8")
    length = len(content)
    if length < 0x80:
        return bytes([tag, length]) + content
    size = (length.bit_length() + 7) // 8
    return bytes([tag, 0x80 | size]) + length.to_bytes(size, "big") + content


def make_certificate(
    extensions: list[tuple[str, bytes]] = (),
    emails: list[str] = (),
    uris: list[str] = (),
) -> str:
    """Create a self signed, Fulcio like, PEM certificate"""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([]))
        .issuer_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "sigstore-intermediate")])
        )
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(minutes=10))
    )
    names = [x509.RFC822Name(e) for e in emails]
    names += [x509.UniformResourceIdentifier(u) for u in uris]
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=True)
    for oid, value in extensions:
        builder = builder.add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier(oid), value),
            critical=False,
        )
    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def make_envelope(statement: dict, payload_type: str = "application/vnd.in-toto+json") -> bytes:
    payload = b64encode(json.dumps(statement).encode("utf-8")).decode("ascii")
    return json.dumps(
        {
            "payloadType": payload_type,
            "payload": payload,
            "signatures": [{"keyid": "", "sig": "MEUCIQ=="}],
        }
    ).encode("utf-8")


def digest_of(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


def _media_type(data: bytes) -> str:
    try:
        return json.loads(data).get("mediaType", OCI_MANIFEST)
    except (ValueError, AttributeError):
        return OCI_MANIFEST


class ClosingStream(httpx.SyncByteStream):
    """Byte stream that records whether it was closed"""

    def __init__(self, data: bytes, chunk_size: int = 7):
        self.data = data
        self.chunk_size = chunk_size
        self.closed = False

    def __iter__(self):
        for start in range(0, len(self.data), self.chunk_size):
            yield self.data[start : start + self.chunk_size]

    def close(self):
        self.closed = True


class FakeRegistry:
    """In memory registry serving manifests and blobs through httpx.MockTransport"""

    def __init__(self):
        self.manifests: dict[tuple[str, str], bytes] = {}
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.streams: list[ClosingStream] = []
        self.requests: list[httpx.Request] = []

    def add_manifest(self, name: str, reference: str | None, manifest: dict) -> str:
        data = json.dumps(manifest).encode("utf-8")
        digest = digest_of(data)
        self.manifests[(name, digest)] = data
        if reference is not None:
            self.manifests[(name, reference)] = data
        return digest

    def add_blob(self, name: str, data: bytes) -> str:
        digest = digest_of(data)
        self.blobs[(name, digest)] = data
        return digest

    def add_image(self, name: str, tag: str = "latest") -> str:
        config = self.add_blob(name, b"{}")
        return self.add_manifest(
            name,
            tag,
            {
                "schemaVersion": 2,
                "mediaType": OCI_MANIFEST,
                "config": {
                    "mediaType": "application/vnd.oci.image.config.v1+json",
                    "digest": config,
                    "size": 2,
                },
                "layers": [],
            },
        )

    def add_index(self, name: str, tag: str, manifests: list[str]) -> str:
        """Add a multi-arch index over the image manifests `manifests`"""
        return self.add_manifest(
            name,
            tag,
            {
                "schemaVersion": 2,
                "mediaType": OCI_INDEX,
                "manifests": [
                    {
                        "mediaType": OCI_MANIFEST,
                        "digest": digest,
                        "size": len(self.manifests[(name, digest)]),
                    }
                    for digest in manifests
                ],
            },
        )

    def add_companion(self, name: str, image_digest: str, suffix: str, layers: list[dict]) -> str:
        tag = f"{image_digest.replace(':', '-')}.{suffix}"
        return self.add_manifest(
            name,
            tag,
            {
                "schemaVersion": 2,
                "mediaType": OCI_MANIFEST,
                "config": {
                    "mediaType": "application/vnd.oci.image.config.v1+json",
                    "digest": digest_of(b"{}"),
                    "size": 2,
                },
                "layers": layers,
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v2/":
            return httpx.Response(200)
        name, _, rest = path.removeprefix("/v2/").rpartition("/manifests/")
        if name:
            data = self.manifests.get((name, rest))
            if data is None:
                return httpx.Response(404, json={"errors": [{"code": "MANIFEST_UNKNOWN"}]})
            media_type = _media_type(data)
            # Like distribution, refuse manifests of a type the client does not accept
            accept = request.headers.get("Accept", "*/*")
            if accept != "*/*" and media_type not in accept:
                return httpx.Response(404, json={"errors": [{"code": "MANIFEST_UNKNOWN"}]})
            headers = {
                "Docker-Content-Digest": digest_of(data),
                "Content-Type": media_type,
            }
            if request.method == "HEAD":
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, headers=headers, content=data)
        name, _, digest = path.removeprefix("/v2/").rpartition("/blobs/")
        if name and (name, digest) in self.blobs:
            stream = ClosingStream(self.blobs[(name, digest)])
            self.streams.append(stream)
            return httpx.Response(200, stream=stream)
        return httpx.Response(404)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def client(registry) -> Client:
    with Client(
        registry_url=f"https://{REGISTRY}",
        transport=httpx.MockTransport(registry.handler),
    ) as client:
        yield client
