class OciFyiError(Exception):
    """Base class for all ocifyi errors."""


class NotFound(OciFyiError):
    """Raised when a manifest does not exist in the registry.

    For companion manifests this is not a fault,
    it means the image has no signatures or attestations.
    """


class TransportError(OciFyiError):
    """Raised when talking to the registry fails."""


class AuthenticationError(TransportError):
    """Raised when authentication fails."""


class ParseError(OciFyiError):
    """Raised when a certificate or one of its extensions can not be parsed."""


class DecodeError(OciFyiError):
    """Raised when a bundle, DSSE envelope or statement header is malformed."""


class WalkError(OciFyiError):
    """Raised when walking a signature or attestation manifest fails.

    `stage` is one of "companion", "manifest", "digest" or "layer",
    `layer_index` is set for the "layer" stage.
    The original error is available as `__cause__`.
    """

    def __init__(self, stage: str, message: str, layer_index: int | None = None):
        self.stage = stage
        self.layer_index = layer_index
        if layer_index is not None:
            message = f"layer {layer_index}: {message}"
        super().__init__(f"{stage}: {message}")
