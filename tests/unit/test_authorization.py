"""Unit tests for authorizations and challenge completion."""

import logging

import httpx
import pytest
from conftest import DIRECTORY, NEW_AUTHZ_URL, decode_jws

from acmekit.authorization import AuthorizationPoller
from acmekit.challenges import ChallengeProof, ChallengeResolver
from acmekit.exceptions import AcmeTimeoutError, ProblemError, ValidationError
from acmekit.models import (
    Authorization,
    AuthorizationStatus,
    ChallengeType,
    Identifier,
)

AUTHZ_URL = "https://acme.test/authz/1"
ORDER_URL = "https://acme.test/order/1"
HTTP_CHALLENGE_URL = "https://acme.test/chall/http"
DNS_CHALLENGE_URL = "https://acme.test/chall/dns"


def authz_json(status: str = "pending", http_status: str = "pending", **extra) -> dict:
    return {
        "status": status,
        "identifier": {"type": "dns", "value": "example.com"},
        "challenges": [
            {
                "type": "http-01",
                "url": HTTP_CHALLENGE_URL,
                "status": http_status,
                "token": "tok-http",
            },
            {"type": "dns-01", "url": DNS_CHALLENGE_URL, "status": "pending", "token": "tok-dns"},
        ],
        **extra,
    }


def make_authz(status: str = "pending") -> Authorization:
    return Authorization.model_validate({**authz_json(status), "url": AUTHZ_URL})


class RecordingResolver(ChallengeResolver):
    """Resolver that records calls and can be told to fail."""

    def __init__(
        self, supported_types=(ChallengeType.HTTP_01,), fail_perform=None, fail_cleanup=None
    ):
        self.supported_types = tuple(supported_types)
        self.fail_perform = fail_perform
        self.fail_cleanup = fail_cleanup
        self.events: list[tuple[str, ChallengeProof]] = []

    def perform(self, proof: ChallengeProof) -> None:
        self.events.append(("perform", proof))
        if self.fail_perform:
            raise self.fail_perform

    def cleanup(self, proof: ChallengeProof) -> None:
        self.events.append(("cleanup", proof))
        if self.fail_cleanup:
            raise self.fail_cleanup


@pytest.fixture
def poller(session) -> AuthorizationPoller:
    return AuthorizationPoller(session)


@pytest.fixture
def challenge_route(fake_acme):
    return fake_acme.router.post(HTTP_CHALLENGE_URL).mock(
        side_effect=lambda request: fake_acme.reply(
            json={
                "type": "http-01",
                "url": HTTP_CHALLENGE_URL,
                "status": "processing",
                "token": "tok-http",
            }
        )
    )


def serve_authz(fake_acme, *bodies, headers=None):
    responses = iter(bodies)
    return fake_acme.router.post(AUTHZ_URL).mock(
        side_effect=lambda request: fake_acme.reply(json=next(responses), headers=headers)
    )


class TestFetch:
    """Tests for fetching authorizations."""

    def test_fetch_with_up_link(self, fake_acme, poller):
        """The Link rel="up" header becomes order_url."""
        serve_authz(fake_acme, authz_json(), headers={"Link": f'<{ORDER_URL}>;rel="up"'})

        authz = poller.fetch_authorization(AUTHZ_URL)

        assert authz.url == AUTHZ_URL
        assert authz.order_url == ORDER_URL
        assert authz.identifier == Identifier.dns("example.com")

    def test_fetch_without_link(self, fake_acme, poller):
        """order_url is None without a Link header."""
        serve_authz(fake_acme, authz_json())
        assert poller.fetch_authorization(AUTHZ_URL).order_url is None


class TestAccept:
    """Tests for accepting challenges."""

    def test_empty_object_payload(self, fake_acme, poller, challenge_route):
        """Accepting a challenge posts an empty JSON object."""
        challenge = make_authz().get_challenge(ChallengeType.HTTP_01)

        result = poller.accept(challenge)

        _, payload = decode_jws(challenge_route.calls.last.request)
        assert payload == {}
        assert result.status == "processing"


class TestPollAuthorization:
    """Tests for authorization polling."""

    def test_pending_then_valid(self, fake_acme, poller, no_sleep):
        """Polling continues until the authorization leaves pending."""
        route = serve_authz(fake_acme, authz_json(), authz_json(), authz_json("valid", "valid"))

        authz = poller.poll_until_settled(AUTHZ_URL, interval=2)

        assert authz.status == AuthorizationStatus.VALID
        assert route.call_count == 3
        assert no_sleep == [2, 4]

    def test_retry_after(self, fake_acme, poller, no_sleep):
        """Retry-After sets the wait between polls."""
        serve_authz(fake_acme, authz_json(), authz_json("valid"), headers={"Retry-After": "3"})
        poller.poll_until_settled(AUTHZ_URL)
        assert no_sleep == [3]

    def test_invalid_is_settled(self, fake_acme, poller, no_sleep):
        """An invalid authorization is returned, not raised."""
        body = authz_json("invalid", "invalid")
        body["challenges"][0]["error"] = {
            "type": "urn:ietf:params:acme:error:connection",
            "detail": "Connection refused",
        }
        serve_authz(fake_acme, body)

        authz = poller.poll_until_settled(AUTHZ_URL)

        assert authz.status == AuthorizationStatus.INVALID
        assert authz.get_challenge(ChallengeType.HTTP_01).error.detail == "Connection refused"

    def test_timeout(self, fake_acme, poller, no_sleep):
        """Running out of attempts raises AcmeTimeoutError."""
        fake_acme.router.post(AUTHZ_URL).mock(
            side_effect=lambda request: fake_acme.reply(json=authz_json())
        )
        with pytest.raises(AcmeTimeoutError) as exc_info:
            poller.poll_until_settled(AUTHZ_URL, max_attempts=4)
        assert exc_info.value.last.status == AuthorizationStatus.PENDING


class TestSelectChallenge:
    """Tests for challenge selection."""

    def test_preference_order(self, poller):
        """The resolver's first listed type that is offered is chosen."""
        challenge = poller.select_challenge(
            make_authz(), (ChallengeType.DNS_01, ChallengeType.HTTP_01)
        )
        assert challenge.type == ChallengeType.DNS_01

    def test_none_supported(self, poller):
        """No common challenge type raises ValidationError."""
        with pytest.raises(ValidationError, match="No supported challenge"):
            poller.select_challenge(make_authz(), (ChallengeType.TLS_ALPN_01,))


class TestComplete:
    """Tests for the perform/accept/poll/cleanup sequence."""

    def test_success(self, fake_acme, poller, challenge_route, no_sleep, session):
        """Perform, accept, poll and cleanup run in order."""
        serve_authz(fake_acme, authz_json("valid", "valid"))
        resolver = RecordingResolver()

        authz = poller.complete(make_authz(), resolver)

        assert authz.status == AuthorizationStatus.VALID
        assert [event for event, _ in resolver.events] == ["perform", "cleanup"]
        proof = resolver.events[0][1]
        assert proof.token == "tok-http"
        assert proof.key_authorization == f"tok-http.{session.signer.thumbprint}"
        assert challenge_route.call_count == 1

    def test_already_valid_skipped(self, fake_acme, poller):
        """A non-pending authorization is returned untouched."""
        resolver = RecordingResolver()
        authz = make_authz("valid")

        assert poller.complete(authz, resolver) is authz
        assert resolver.events == []
        assert fake_acme.new_nonce.call_count == 0

    def test_invalid_result_still_cleans_up(self, fake_acme, poller, challenge_route, no_sleep):
        """Cleanup runs when the authorization ends invalid."""
        serve_authz(fake_acme, authz_json("invalid", "invalid"))
        resolver = RecordingResolver()

        authz = poller.complete(make_authz(), resolver)

        assert authz.status == AuthorizationStatus.INVALID
        assert [event for event, _ in resolver.events] == ["perform", "cleanup"]

    def test_perform_failure_cleans_up_and_skips_accept(self, fake_acme, poller, challenge_route):
        """A failing perform is cleaned up and never accepted."""
        resolver = RecordingResolver(fail_perform=RuntimeError("DNS API down"))

        with pytest.raises(RuntimeError, match="DNS API down"):
            poller.complete(make_authz(), resolver)

        assert [event for event, _ in resolver.events] == ["perform", "cleanup"]
        assert challenge_route.call_count == 0

    def test_accept_failure_cleans_up(self, fake_acme, poller):
        """Cleanup runs when accepting the challenge fails."""
        fake_acme.router.post(HTTP_CHALLENGE_URL).mock(
            side_effect=lambda request: fake_acme.problem("malformed", "bad challenge")
        )
        resolver = RecordingResolver()

        with pytest.raises(ProblemError):
            poller.complete(make_authz(), resolver)

        assert [event for event, _ in resolver.events] == ["perform", "cleanup"]

    def test_cleanup_failure_does_not_mask_original(
        self, fake_acme, poller, challenge_route, no_sleep, log_capture
    ):
        """A cleanup error after a failure is logged; the first error propagates."""
        fake_acme.router.post(AUTHZ_URL).mock(
            side_effect=lambda request: fake_acme.reply(json=authz_json())
        )
        resolver = RecordingResolver(fail_cleanup=OSError("cannot delete"))

        with pytest.raises(AcmeTimeoutError):
            poller.complete(make_authz(), resolver, max_attempts=2)

        assert "Challenge cleanup failed" in log_capture.get_messages(logging.WARNING)

    def test_cleanup_failure_after_success_propagates(
        self, fake_acme, poller, challenge_route, no_sleep
    ):
        """A cleanup error after success propagates."""
        serve_authz(fake_acme, authz_json("valid", "valid"))
        resolver = RecordingResolver(fail_cleanup=OSError("cannot delete"))

        with pytest.raises(OSError, match="cannot delete"):
            poller.complete(make_authz(), resolver)

    def test_unsupported_challenge_types(self, fake_acme, poller):
        """Unknown challenge types are skipped."""
        resolver = RecordingResolver(supported_types=(ChallengeType.TLS_ALPN_01,))
        with pytest.raises(ValidationError):
            poller.complete(make_authz(), resolver)
        assert resolver.events == []


class TestDeactivateAndPreAuthorize:
    """Tests for deactivation and newAuthz."""

    def test_deactivate(self, fake_acme, poller):
        """Deactivation posts the deactivated status."""
        route = serve_authz(fake_acme, authz_json("deactivated"))

        authz = poller.deactivate(AUTHZ_URL)

        assert authz.status == AuthorizationStatus.DEACTIVATED
        _, payload = decode_jws(route.calls.last.request)
        assert payload == {"status": "deactivated"}

    def test_pre_authorize(self, fake_acme, poller):
        """newAuthz creates an authorization for one identifier."""
        route = fake_acme.router.post(NEW_AUTHZ_URL).mock(
            side_effect=lambda request: fake_acme.reply(
                201, json=authz_json(), headers={"Location": AUTHZ_URL}
            )
        )

        authz = poller.pre_authorize(Identifier.dns("example.com"))

        assert authz.url == AUTHZ_URL
        _, payload = decode_jws(route.calls.last.request)
        assert payload == {"identifier": {"type": "dns", "value": "example.com"}}

    def test_pre_authorize_unsupported(self, fake_acme, poller):
        """pre_authorize refuses when the directory has no newAuthz."""
        directory = {k: v for k, v in DIRECTORY.items() if k != "newAuthz"}
        fake_acme.directory.mock(return_value=httpx.Response(200, json=directory))

        with pytest.raises(ValidationError, match="newAuthz"):
            poller.pre_authorize(Identifier.dns("example.com"))
