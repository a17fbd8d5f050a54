import base64
import html
import logging
import os
from contextlib import ExitStack
from pathlib import Path
from typing import Annotated

from fastapi import FastAPI, Header, Request, Response
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

import ocifyi
from ocifyi.exceptions import AuthenticationError, NotFound, OciFyiError
from ocifyi.render import (
    build_config_url,
    issuer_icon,
    sha_url,
    subject_alt_name,
    summarize,
    unix,
)
from ocifyi.walker import companion_registry

app = FastAPI()
templates = Jinja2Templates(directory=Path(__file__).parent / "templates")
templates.env.filters.update(
    unix=unix,
    sha_url=sha_url,
    build_config_url=build_config_url,
    issuer_icon=issuer_icon,
    subject_alt_name=subject_alt_name,
)
logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "cgr.dev/chainguard/static"


def parse_auth_header(authorization: str) -> tuple[str, str]:
    """Parse a Basic Authorization header into username and password.

    Raises ValueError for other schemes or malformed credentials.
    """
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "basic":
        raise ValueError(f"Unsupported authorization scheme: {scheme!r}")
    try:
        username, password = (
            base64.b64decode(credentials.encode("utf-8"), validate=True)
            .decode("utf-8")
            .split(":", 1)
        )
    except ValueError as e:
        raise ValueError(f"Invalid Basic credentials: {e}") from e
    return username, password


@app.get("/", response_class=HTMLResponse, name="inspect")
def inspect_image(
    request: Request,
    response: Response,
    image: str | None = None,
    authorization: Annotated[str | None, Header()] = None,
    ocifyi_insecure: Annotated[bool, Header(alias="X-OciFyi-Insecure")] = False,
):
    if not image:
        return templates.TemplateResponse(
            request, "index.html", {"image": DEFAULT_IMAGE}
        )
    try:
        ref = ocifyi.oci.ImageReference.parse(image)
    except ValueError as e:
        response.status_code = 400
        return html.escape(str(e))

    scheme = "https" if not ocifyi_insecure else "http"
    username = password = None
    if authorization is not None:
        try:
            username, password = parse_auth_header(authorization)
        except ValueError as e:
            response.status_code = 400
            return html.escape(str(e))

    repository = os.environ.get("COSIGN_REPOSITORY")
    with ExitStack() as stack:
        client = stack.enter_context(
            ocifyi.oci.Client(
                registry_url=f"{scheme}://{ref.registry}",
                username=username,
                password=password,
            )
        )
        companion_client = None
        if registry := companion_registry(ref, repository):
            # Credentials are only sent to the registry of the image
            companion_client = stack.enter_context(
                ocifyi.oci.Client(registry_url=f"{scheme}://{registry}")
            )
        try:
            summary = summarize(
                ref,
                client=client,
                repository=repository,
                companion_client=companion_client,
            )
        except NotFound:
            response.status_code = 404
            return html.escape(f"{ref} not found")
        except AuthenticationError:
            response.status_code = 401
            return "Unauthorized"
        except OciFyiError as e:
            logger.warning("Error inspecting %s: %s", ref, e)
            response.status_code = 502
            return html.escape(str(e))

    logger.info("Inspected %s", summary.resolved)
    return templates.TemplateResponse(
        request,
        "inspect.html",
        {"image": image, "summary": summary},
    )
