"""ACME account lifecycle (RFC 8555 Section 7.3)."""

from collections.abc import Sequence
from typing import Any

from acmekit._http import parse_model, require_location
from acmekit._logging import get_logger
from acmekit.crypto import PrivateKey, get_jwk, sign_external_account_binding
from acmekit.exceptions import ValidationError
from acmekit.models import Account, AccountStatus, ExternalAccountBinding
from acmekit.session import AcmeSession

logger = get_logger(__name__)


def _check_contacts(contacts: Sequence[str]) -> list[str]:
    contacts = list(contacts)
    if len(set(contacts)) != len(contacts):
        raise ValidationError(f"Duplicate contact URIs: {contacts}")
    for contact in contacts:
        if ":" not in contact:
            raise ValidationError(f"Contact must be a URI (e.g. mailto:): {contact!r}")
    return contacts


class AccountManager:
    """Creates, looks up and updates the account bound to the session key."""

    def __init__(self, session: AcmeSession):
        self._session = session

    @property
    def account_url(self) -> str | None:
        """Account URL (the ``kid``), once known."""
        return self._session.signer.key_identifier

    def _require_account_url(self) -> str:
        if not self.account_url:
            raise ValidationError(
                "Account not registered. Call create_account() or find_account() first."
            )
        return self.account_url

    def create_account(
        self,
        contacts: Sequence[str] = (),
        agree_to_tos: bool = False,
        external_binding: ExternalAccountBinding | None = None,
    ) -> Account:
        """Register a new account or find an existing one.

        If an account already exists for the key, the server answers with
        that account and it is returned like a new one.

        Args:
            contacts: Contact URIs (e.g. ``mailto:admin@example.com``).
            agree_to_tos: Whether the terms of service are agreed to.
            external_binding: EAB credentials, required by some CAs.

        Returns:
            The Account resource.

        Raises:
            ValidationError: If contacts repeat, or the CA requires external
                account binding and none was given.
        """
        contacts = _check_contacts(contacts)
        directory = self._session.directory
        if directory.external_account_required and external_binding is None:
            raise ValidationError("This CA requires external account binding")

        url = directory.new_account
        payload: dict[str, Any] = {"termsOfServiceAgreed": agree_to_tos}
        if contacts:
            payload["contact"] = contacts
        if external_binding is not None:
            payload["externalAccountBinding"] = sign_external_account_binding(
                self._session.signer.account_key,
                kid=external_binding.kid,
                hmac_key=external_binding.key_bytes(),
                url=url,
            )

        response = self._session.post(url, payload, use_jwk=True)
        account_url = require_location(response)
        self._session.signer.key_identifier = account_url

        account = parse_model(Account, response, url=account_url)
        logger.info(
            "Account created" if response.status_code == 201 else "Existing account found",
            extra={"account_url": account_url, "status": account.status},
        )
        return account

    def find_account(self) -> Account:
        """Look up the account for the key without creating one.

        Raises:
            ProblemError: ``accountDoesNotExist`` if the key has no account.
        """
        response = self._session.post(
            self._session.directory.new_account,
            {"onlyReturnExisting": True},
            use_jwk=True,
        )
        account_url = require_location(response)
        self._session.signer.key_identifier = account_url
        return parse_model(Account, response, url=account_url)

    def get_account(self) -> Account:
        """Fetch the current account resource."""
        url = self._require_account_url()
        response = self._session.post_as_get(url)
        return parse_model(Account, response, url=url)

    def update_contacts(self, contacts: Sequence[str]) -> Account:
        """Replace the account's contact URIs."""
        contacts = _check_contacts(contacts)
        url = self._require_account_url()
        response = self._session.post(url, {"contact": contacts})
        logger.info("Account contacts updated", extra={"account_url": url})
        return parse_model(Account, response, url=url)

    def deactivate(self) -> Account:
        """Deactivate the account (RFC 8555 Section 7.3.6).

        WARNING: This is irreversible. A deactivated account cannot be
        reactivated, and no new orders can be created.
        """
        url = self._require_account_url()
        response = self._session.post(url, {"status": AccountStatus.DEACTIVATED.value})
        logger.info("Account deactivated", extra={"account_url": url})
        return parse_model(Account, response, url=url)

    def roll_key(self, new_key: PrivateKey) -> None:
        """Roll over to a new account key (RFC 8555 Section 7.3.5).

        The inner JWS, signed by the new key, is built first and becomes the
        payload of the outer JWS signed by the old key. Afterwards all
        requests are signed with the new key.

        Args:
            new_key: The new private key to use for the account.
        """
        account_url = self._require_account_url()
        signer = self._session.signer
        url = self._session.directory.key_change

        inner = signer.sign(
            url,
            {"account": account_url, "oldKey": get_jwk(signer.account_key)},
            key=new_key,
            include_nonce=False,
        )
        self._session.post(url, inner.model_dump())

        signer.account_key = new_key
        logger.info("Account key rolled over", extra={"account_url": account_url})
