"""ACME directory discovery (RFC 8555 Section 7.1.1)."""

import httpx

from acmekit._http import USER_AGENT, check_response, parse_model
from acmekit._logging import get_logger
from acmekit.exceptions import TransportError
from acmekit.models import Directory

logger = get_logger(__name__)

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"


class DirectoryClient:
    """Fetches the directory of endpoint URLs and CA metadata.

    The result is not cached here; callers keep the Directory they got.
    """

    def __init__(self, http: httpx.Client):
        self._http = http

    def fetch_directory(self, url: str) -> Directory:
        """Fetch and parse the directory with an unsigned GET.

        Args:
            url: The directory URL.

        Returns:
            The parsed Directory.

        Raises:
            TransportError: On network or TLS failure.
            ProblemError: If the server answers with a problem document.
            ProtocolError: If the body is not a valid directory.
        """
        try:
            response = self._http.get(url, headers={"User-Agent": USER_AGENT})
        except httpx.TransportError as e:
            raise TransportError(f"Failed to fetch directory {url}: {e}") from e

        check_response(response)
        directory = parse_model(Directory, response)
        logger.debug(
            "Directory fetched",
            extra={
                "url": url,
                "external_account_required": directory.external_account_required,
                "new_authz": directory.new_authz is not None,
            },
        )
        return directory
