"""JWS request signing for ACME."""

from collections.abc import Mapping
from typing import Any

from acmekit.crypto import PrivateKey, get_algorithm, key_thumbprint, sign_jws
from acmekit.exceptions import ValidationError
from acmekit.models import JwsEnvelope
from acmekit.nonce import NonceManager


class RequestSigner:
    """Signs ACME requests with the account key.

    Before an account exists, requests carry the public key (``jwk``);
    afterwards they carry the account URL (``kid``).

    Args:
        account_key: The account private key. Owned by the caller.
        nonces: Source of replay nonces.
        key_identifier: Account URL, if already known.
    """

    def __init__(
        self,
        account_key: PrivateKey,
        nonces: NonceManager,
        key_identifier: str | None = None,
    ):
        self.account_key = account_key
        self.key_identifier = key_identifier
        self._nonces = nonces

    @property
    def thumbprint(self) -> str:
        """RFC 7638 thumbprint of the current account key."""
        return key_thumbprint(self.account_key)

    def sign(
        self,
        url: str,
        payload: Mapping[str, Any] | str,
        *,
        use_jwk: bool = False,
        key: PrivateKey | None = None,
        include_nonce: bool = True,
    ) -> JwsEnvelope:
        """Build a signed envelope for one request.

        Args:
            url: Request URL, bound into the protected header.
            payload: JSON mapping, or "" for POST-as-GET.
            use_jwk: Embed the account public key instead of the ``kid``.
            key: Sign with this key (and its JWK) instead of the account key,
                e.g. a certificate key for revocation or the new key in a
                key rollover.
            include_nonce: Take a nonce from the NonceManager.

        Raises:
            ValidationError: If a ``kid`` is needed but no account is known.
            SigningError: If the key cannot be used.
        """
        kid = None
        if key is None and not use_jwk:
            if not self.key_identifier:
                raise ValidationError(
                    "Account not registered. Call create_account() or find_account() first."
                )
            kid = self.key_identifier

        # Reject unusable keys before a nonce is spent on them
        get_algorithm(key or self.account_key)
        nonce = self._nonces.acquire() if include_nonce else None
        envelope = sign_jws(
            key=key or self.account_key,
            payload=payload,
            url=url,
            nonce=nonce,
            kid=kid,
        )
        return JwsEnvelope.model_validate(envelope)
