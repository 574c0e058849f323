"""Authorizations and challenges (RFC 8555 Sections 7.5 and 7.4.1)."""

import threading

import httpx

from acmekit._http import parse_model, require_location
from acmekit._logging import get_identifier_extra, get_logger
from acmekit.challenges.base import ChallengeProof, ChallengeResolver
from acmekit.exceptions import ValidationError
from acmekit.models import (
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeType,
    Identifier,
)
from acmekit.polling import DEFAULT_INTERVAL, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_INTERVAL, poll
from acmekit.session import AcmeSession

logger = get_logger(__name__)


class AuthorizationPoller:
    """Fetches, answers and polls authorizations."""

    def __init__(self, session: AcmeSession):
        self._session = session

    def fetch_authorization(self, url: str) -> Authorization:
        """Fetch an authorization by URL."""
        return self._fetch(url)[0]

    def accept(self, challenge: Challenge) -> Challenge:
        """Tell the CA the proof for ``challenge`` is in place.

        Call only once the proof is externally visible.

        Returns:
            The challenge as returned by the server.
        """
        response = self._session.post(challenge.url, {})
        logger.debug(
            "Challenge accepted",
            extra={
                "challenge_url": challenge.url,
                "type": challenge.type,
                **get_identifier_extra(),
            },
        )
        return parse_model(Challenge, response)

    def poll_until_settled(
        self,
        authorization_url: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Authorization:
        """Poll an authorization until it is no longer ``pending``.

        An ``invalid`` result is returned, not raised; inspect the
        challenges' ``error`` for the reason.

        Args:
            authorization_url: Authorization URL.
            max_attempts: Maximum number of fetches.
            interval: First backoff delay in seconds.
            max_interval: Backoff cap in seconds.
            cancel: Event aborting the wait between attempts.
            timeout: Overall deadline in seconds.

        Raises:
            AcmeTimeoutError: If attempts or the deadline run out.
            PollCancelledError: If cancelled.
        """
        return poll(
            lambda: self._fetch(authorization_url),
            lambda a: a.status != AuthorizationStatus.PENDING,
            description=f"authorization {authorization_url}",
            max_attempts=max_attempts,
            interval=interval,
            max_interval=max_interval,
            cancel=cancel,
            timeout=timeout,
        )

    def select_challenge(
        self,
        authorization: Authorization,
        supported_types: tuple[ChallengeType, ...],
    ) -> Challenge:
        """Pick the first offered challenge in ``supported_types`` order.

        Raises:
            ValidationError: If none of the types is offered.
        """
        for challenge_type in supported_types:
            challenge = authorization.get_challenge(challenge_type)
            if challenge is not None:
                return challenge
        offered = [str(c.type) for c in authorization.challenges]
        raise ValidationError(
            f"No supported challenge for {authorization.identifier.value}: "
            f"offered {offered}, supported {[str(t) for t in supported_types]}"
        )

    def complete(
        self,
        authorization: Authorization,
        resolver: ChallengeResolver,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Authorization:
        """Satisfy a pending authorization through ``resolver``.

        This method:
        1. Picks a challenge the resolver supports
        2. Has the resolver publish the proof
        3. Accepts the challenge
        4. Polls until the authorization settles
        5. Has the resolver clean up, whatever happened after step 2 started

        Returns:
            The settled authorization (``valid`` or ``invalid``), or the
            input unchanged when it was not pending.
        """
        if authorization.status != AuthorizationStatus.PENDING:
            return authorization
        if not authorization.url:
            raise ValidationError("Authorization has no URL")

        challenge = self.select_challenge(authorization, resolver.supported_types)
        proof = ChallengeProof(
            challenge=challenge,
            identifier=authorization.identifier,
            thumbprint=self._session.signer.thumbprint,
        )

        logger.info(
            "Completing authorization",
            extra={
                "identifier": authorization.identifier.value,
                "type": challenge.type,
                "authorization_url": authorization.url,
            },
        )
        try:
            resolver.perform(proof)
            self.accept(challenge)
            settled = self.poll_until_settled(
                authorization.url,
                max_attempts=max_attempts,
                interval=interval,
                max_interval=max_interval,
                cancel=cancel,
                timeout=timeout,
            )
        except BaseException:
            self._cleanup_after_failure(resolver, proof)
            raise
        resolver.cleanup(proof)

        logger.info(
            "Authorization settled",
            extra={
                "identifier": authorization.identifier.value,
                "status": settled.status,
                "authorization_url": authorization.url,
            },
        )
        return settled

    def deactivate(self, authorization_url: str) -> Authorization:
        """Deactivate an authorization (RFC 8555 Section 7.5.2).

        This prevents the authorization from being used to issue certificates.
        Use this when selling/transferring a domain to ensure no new certificates
        can be issued for it.
        """
        response = self._session.post(
            authorization_url, {"status": AuthorizationStatus.DEACTIVATED.value}
        )
        return self._parse(response, authorization_url)

    def pre_authorize(self, identifier: Identifier) -> Authorization:
        """Create an authorization ahead of any order (RFC 8555 Section 7.4.1).

        Raises:
            ValidationError: If the directory does not offer ``newAuthz``.
        """
        new_authz = self._session.directory.new_authz
        if not new_authz:
            raise ValidationError("This CA does not support pre-authorization (no newAuthz)")
        response = self._session.post(new_authz, {"identifier": identifier.model_dump(mode="json")})
        return self._parse(response, require_location(response))

    def _cleanup_after_failure(self, resolver: ChallengeResolver, proof: ChallengeProof) -> None:
        try:
            resolver.cleanup(proof)
        except Exception:
            # The original failure is the one the caller needs to see
            logger.warning(
                "Challenge cleanup failed",
                exc_info=True,
                extra={"identifier": proof.identifier.value, "type": proof.type},
            )

    def _fetch(self, url: str) -> tuple[Authorization, httpx.Response]:
        response = self._session.post_as_get(url)
        return self._parse(response, url), response

    @staticmethod
    def _parse(response: httpx.Response, url: str) -> Authorization:
        up = response.links.get("up", {}).get("url")
        return parse_model(Authorization, response, url=url, order_url=up)
