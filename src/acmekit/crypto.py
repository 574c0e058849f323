"""Cryptographic utilities for ACME request signing."""

import base64
import hashlib
import json
from collections.abc import Mapping
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from acmekit.exceptions import SigningError

# Type alias for account and certificate keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey

# curve name -> (JWK crv, JWS alg, hash, coordinate size)
_EC_PARAMS: dict[str, tuple[str, str, hashes.HashAlgorithm, int]] = {
    "secp256r1": ("P-256", "ES256", hashes.SHA256(), 32),
    "secp384r1": ("P-384", "ES384", hashes.SHA384(), 48),
    "secp521r1": ("P-521", "ES512", hashes.SHA512(), 66),
}


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Base64url decode, tolerating missing padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def json_bytes(obj: Any) -> bytes:
    """Compact JSON encoding used for every signed payload and header."""
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


def _ec_params(key: ec.EllipticCurvePrivateKey) -> tuple[str, str, hashes.HashAlgorithm, int]:
    curve_name = key.curve.name
    if curve_name not in _EC_PARAMS:
        raise SigningError(f"Unsupported curve: {curve_name}")
    return _EC_PARAMS[curve_name]


def _int_to_base64url(n: int, length: int | None = None) -> str:
    """Convert an integer to base64url encoding, optionally with fixed length."""
    length = length or (n.bit_length() + 7) // 8
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def get_algorithm(key: PrivateKey) -> str:
    """Return the JWS ``alg`` value for a key.

    Raises:
        SigningError: If the key type or curve is not supported.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return _ec_params(key)[1]
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return "EdDSA"
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def get_jwk(key: PrivateKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) representation of a key's public half.

    Args:
        key: Private key to extract public JWK from.

    Returns:
        JWK dictionary.

    Raises:
        SigningError: If the key type or curve is not supported.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        public_numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(public_numbers.n),
            "e": _int_to_base64url(public_numbers.e),
        }
    if isinstance(key, ec.EllipticCurvePrivateKey):
        crv, _, _, coord_size = _ec_params(key)
        public_numbers = key.public_key().public_numbers()
        return {
            "kty": "EC",
            "crv": crv,
            "x": _int_to_base64url(public_numbers.x, coord_size),
            "y": _int_to_base64url(public_numbers.y, coord_size),
        }
    if isinstance(key, ed25519.Ed25519PrivateKey):
        raw = key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        return {"kty": "OKP", "crv": "Ed25519", "x": base64url_encode(raw)}
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638).

    Args:
        key: Private key to compute thumbprint for.

    Returns:
        Base64url-encoded SHA-256 thumbprint.
    """
    # Only the required members, lexicographically sorted, no whitespace
    jwk = get_jwk(key)
    required = {
        "RSA": ("e", "kty", "n"),
        "EC": ("crv", "kty", "x", "y"),
        "OKP": ("crv", "kty", "x"),
    }
    canonical = {name: jwk[name] for name in required[jwk["kty"]]}
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64url_encode(hashlib.sha256(encoded).digest())


def _sign(key: PrivateKey, signing_input: bytes) -> bytes:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(key, ec.EllipticCurvePrivateKey):
        _, _, hash_alg, coord_size = _ec_params(key)
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hash_alg)))
        # JWS wants fixed-size r||s, not DER
        return r.to_bytes(coord_size, byteorder="big") + s.to_bytes(coord_size, byteorder="big")
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return key.sign(signing_input)
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def encode_payload(payload: Mapping[str, Any] | str) -> str:
    """Base64url-encode a request payload.

    The empty string stays empty (POST-as-GET); mappings become compact JSON.
    """
    if payload == "":
        return ""
    if isinstance(payload, str):
        raise SigningError("Payload must be a mapping or the empty string")
    return base64url_encode(json_bytes(payload))


def sign_jws(
    key: PrivateKey,
    payload: Mapping[str, Any] | str,
    url: str,
    nonce: str | None = None,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS for ACME.

    Args:
        key: Private key to sign with.
        payload: Payload to sign (mapping for JSON, empty string for POST-as-GET).
        url: URL of the ACME endpoint.
        nonce: Replay nonce (omitted for the inner JWS in key rollover).
        kid: Account URL. If None, the key's JWK is embedded instead.

    Returns:
        Dict with ``protected``, ``payload`` and ``signature`` members.

    Raises:
        SigningError: If the key cannot be used.
    """
    protected: dict[str, Any] = {"alg": get_algorithm(key), "url": url}
    if nonce is not None:
        protected["nonce"] = nonce
    if kid:
        protected["kid"] = kid
    else:
        protected["jwk"] = get_jwk(key)

    protected_b64 = base64url_encode(json_bytes(protected))
    payload_b64 = encode_payload(payload)
    signature = _sign(key, f"{protected_b64}.{payload_b64}".encode("ascii"))

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }


def sign_external_account_binding(
    account_key: PrivateKey, kid: str, hmac_key: bytes, url: str
) -> dict[str, str]:
    """Build the externalAccountBinding JWS (RFC 8555 Section 7.3.4).

    The payload is the account's public JWK, MACed with the CA-issued key.
    """
    protected_b64 = base64url_encode(json_bytes({"alg": "HS256", "kid": kid, "url": url}))
    payload_b64 = base64url_encode(json_bytes(get_jwk(account_key)))

    mac = hmac.HMAC(hmac_key, hashes.SHA256())
    mac.update(f"{protected_b64}.{payload_b64}".encode("ascii"))

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(mac.finalize()),
    }


def csr_to_der(csr: bytes | x509.CertificateSigningRequest) -> bytes:
    """Return the DER encoding of a CSR given as bytes or a CSR object."""
    if isinstance(csr, x509.CertificateSigningRequest):
        return csr.public_bytes(serialization.Encoding.DER)
    return csr


def certificate_to_der(certificate: bytes | x509.Certificate) -> bytes:
    """Return the DER encoding of a certificate given as bytes or an object."""
    if isinstance(certificate, x509.Certificate):
        return certificate.public_bytes(serialization.Encoding.DER)
    return certificate
