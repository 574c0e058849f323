"""HTTP-01 challenge values (RFC 8555 Section 8.3)."""

WELL_KNOWN_PATH = "/.well-known/acme-challenge/"


def http_resource_path(token: str) -> str:
    """Path the CA will request over plain HTTP on port 80."""
    return f"{WELL_KNOWN_PATH}{token}"


def http_resource_url(domain: str, token: str) -> str:
    """Full URL the CA will request for ``domain``."""
    return f"http://{domain}{http_resource_path(token)}"
