"""Response checking shared by the signed and unsigned request paths."""

import json
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from acmekit._version import __version__
from acmekit.exceptions import ProblemError, ProtocolError

USER_AGENT = f"acmekit/{__version__}"
JOSE_CONTENT_TYPE = "application/jose+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"

ModelT = TypeVar("ModelT", bound=BaseModel)


def check_response(response: httpx.Response) -> httpx.Response:
    """Raise the matching exception for an error response.

    Args:
        response: Response from the ACME server.

    Returns:
        The response, unchanged, when its status is below 400.

    Raises:
        ProblemError: For error responses carrying a JSON problem document.
        ProtocolError: For error responses with any other body.
    """
    if response.status_code < 400:
        return response

    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ProtocolError(
            f"HTTP {response.status_code} from {response.request.url} "
            f"without a problem document: {response.text[:200]!r}"
        ) from None

    if not isinstance(data, dict):
        raise ProtocolError(f"HTTP {response.status_code} with non-object error body")

    raise ProblemError.from_response(data, response.status_code, response.headers)


def parse_json(response: httpx.Response) -> dict[str, Any]:
    """Decode a success body as a JSON object.

    Raises:
        ProtocolError: If the body is not a JSON object.
    """
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Response from {response.request.url} is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Response from {response.request.url} is not a JSON object")
    return data


def parse_model(model: type[ModelT], response: httpx.Response, **extra: Any) -> ModelT:
    """Validate a JSON response body into a model.

    Args:
        model: Pydantic model class.
        response: Successful response.
        **extra: Fields that do not come from the body (e.g. ``url``).

    Raises:
        ProtocolError: If the body does not match the model.
    """
    data = parse_json(response)
    try:
        return model.model_validate({**data, **extra})
    except SchemaError as e:
        raise ProtocolError(f"Unexpected {model.__name__} from {response.request.url}: {e}") from e


def require_location(response: httpx.Response) -> str:
    """Return the Location header of a creation response.

    Raises:
        ProtocolError: If the server did not send one.
    """
    location = response.headers.get("Location")
    if not location:
        raise ProtocolError(f"Response from {response.request.url} has no Location header")
    return location
