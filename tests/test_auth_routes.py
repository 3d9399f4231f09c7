"""Tests for the login and authorize HTTP endpoints."""

import asyncio
import re
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from fulfillment.db import get_session, repository
from fulfillment.tokens import email_identifier

from .helpers import ADMIN_TOKEN, AUTH_TOKEN, bearer, message_text, sent_messages

EMAIL = "reader@example.com"
REDIRECT = "https://courses.example.com/python"


async def _seed_user(email: str = EMAIL) -> int:
    async with get_session() as session:
        user = await repository.upsert_user(session, email_identifier(email), "seed-token")
        return user.id


async def _grant(user_id: int, path: str, expires_on: datetime) -> None:
    async with get_session() as session:
        await repository.upsert_authorization(session, path, user_id, expires_on)


def _magic_link(ses_client: MagicMock) -> str:
    text = message_text(sent_messages(ses_client)[-1])
    match = re.search(r"(http://\S+/login\?\S+)", text)
    assert match is not None
    return match.group(1)


def _set_cookies(response: httpx.Response) -> dict[str, str]:
    cookies = {}
    for header in response.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        cookies[name] = rest
    return cookies


class TestRequestLoginEndpoint:
    """Tests for POST /login."""

    async def test_known_email(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        await _seed_user()

        response = await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})

        assert response.status_code == 200
        assert response.json() == {"message": "Check your emails"}
        link = _magic_link(ses_client)
        assert link.startswith("http://shop.example.com/login?emailhmac=")

    async def test_unknown_email(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        response = await client.post(
            "/login", json={"email": "stranger@example.com", "redirect": REDIRECT}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Wrong credentials"}
        ses_client.send_email.assert_not_called()

    async def test_missing_fields(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/login", json={"email": EMAIL})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing redirect"}

        response = await client.post("/login", json={"email": "", "redirect": REDIRECT})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing email"}

    async def test_mail_failure_is_generic_500(
        self, client: httpx.AsyncClient, ses_client: MagicMock
    ) -> None:
        from botocore.exceptions import ClientError

        ses_client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Address blacklisted"}}, "SendEmail"
        )
        await _seed_user()

        response = await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})

        assert response.status_code == 500
        assert response.json() == {"error": "Could not handle request"}

    async def test_public_base_url_overrides_request_host(
        self, client: httpx.AsyncClient, ses_client: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from fulfillment.config import settings

        monkeypatch.setattr(settings, "public_base_url", "https://auth.example.com")
        await _seed_user()

        await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})

        text = message_text(sent_messages(ses_client)[-1])
        assert "https://auth.example.com/login?emailhmac=" in text


class TestConfirmLoginEndpoint:
    """Tests for GET /login."""

    async def test_magic_link_signs_in(
        self, client: httpx.AsyncClient, ses_client: MagicMock
    ) -> None:
        await _seed_user()
        await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})
        link = _magic_link(ses_client)

        response = await client.get(link)

        assert response.status_code == 302
        assert response.headers["location"] == REDIRECT
        cookies = _set_cookies(response)
        assert set(cookies) == {"session-salt", "session-token"}
        assert "Domain=.example.com" in cookies["session-token"]
        token = cookies["session-token"].split(";")[0]
        assert re.fullmatch(r"[0-9a-f]{24}", token)

    async def test_link_works_once(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        await _seed_user()
        await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})
        link = _magic_link(ses_client)
        await client.get(link)

        response = await client.get(link)

        assert response.status_code == 302
        location = urlsplit(response.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query) == {"error": ["invalid-token"], "redirect": [REDIRECT]}
        assert response.headers.get_list("set-cookie") == []

    async def test_unknown_user(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/login", params={"emailhmac": "nobody", "token": "t", "redirect": REDIRECT}
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Could not find user"}

    async def test_without_params_serves_login_page(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/login", params={"redirect": REDIRECT})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "magic link" in response.text


class TestAuthorizeEndpoint:
    """Tests for POST /authorize."""

    async def _signed_in(
        self, client: httpx.AsyncClient, ses_client: MagicMock
    ) -> tuple[int, str]:
        user_id = await _seed_user()
        await client.post("/login", json={"email": EMAIL, "redirect": REDIRECT})
        response = await client.get(_magic_link(ses_client))
        token = _set_cookies(response)["session-token"].split(";")[0]
        return user_id, token

    async def test_authorized(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        user_id, token = await self._signed_in(client, ses_client)
        await _grant(user_id, "/courses/python", datetime.now(UTC) + timedelta(days=30))

        response = await client.post(
            "/authorize",
            json={"sessionToken": token, "sessionSalt": "ignored", "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )

        assert response.status_code == 200
        assert response.json() == {"authorized": True}

    async def test_missing_bearer(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/authorize", json={"sessionToken": "t", "path": "/p"})
        assert response.status_code == 401
        assert response.json() == {"error": "Missing authorization header"}

    async def test_wrong_bearer(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/authorize", json={"sessionToken": "t", "path": "/p"}, headers=bearer("nope")
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Wrong authorization header"}

    async def test_admin_token_is_not_service_token(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/authorize", json={"sessionToken": "t", "path": "/p"}, headers=bearer(ADMIN_TOKEN)
        )
        assert response.status_code == 401

    async def test_unknown_session(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/authorize",
            json={"sessionToken": "unknown", "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Session not found"}

    async def test_missing_path(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/authorize", json={"sessionToken": "t"}, headers=bearer(AUTH_TOKEN)
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Missing path"}

    async def test_no_grant(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        _, token = await self._signed_in(client, ses_client)

        response = await client.post(
            "/authorize",
            json={"sessionToken": token, "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Authorization not found"}

    async def test_expired_grant(self, client: httpx.AsyncClient, ses_client: MagicMock) -> None:
        user_id, token = await self._signed_in(client, ses_client)
        await _grant(user_id, "/courses/python", datetime.now(UTC) - timedelta(minutes=1))

        response = await client.post(
            "/authorize",
            json={"sessionToken": token, "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Authorization expired"}

    async def test_rotated_out_session(
        self, client: httpx.AsyncClient, ses_client: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from fulfillment.config import settings

        monkeypatch.setattr(settings, "session_concurrency", 1)
        user_id, first = await self._signed_in(client, ses_client)
        _, second = await self._signed_in(client, ses_client)
        await _grant(user_id, "/courses/python", datetime.now(UTC) + timedelta(days=30))

        old = await client.post(
            "/authorize",
            json={"sessionToken": first, "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )
        new = await client.post(
            "/authorize",
            json={"sessionToken": second, "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )

        assert old.status_code == 401
        assert old.json() == {"error": "Session expired"}
        assert new.status_code == 200


class TestMagicLinkScenario:
    """A pending token redeems once, then only yields the invalid-token redirect."""

    async def test_abc123_round_trip(self, client: httpx.AsyncClient) -> None:
        async with get_session() as session:
            await repository.upsert_user(session, email_identifier(EMAIL), "abc123")
        params = {"emailhmac": email_identifier(EMAIL), "token": "abc123", "redirect": "/x"}

        first = await client.get("/login", params=params)

        assert first.status_code == 302
        assert first.headers["location"] == "/x"
        assert set(_set_cookies(first)) == {"session-salt", "session-token"}

        second = await client.get("/login", params=params)

        assert second.status_code == 302
        assert second.headers["location"] == (
            "http://shop.example.com/login?error=invalid-token&redirect=/x"
        )


class TestConcurrentRedemption:
    """Simultaneous clicks on one magic link against a file database."""

    @pytest.mark.usefixtures("file_session_factory")
    async def test_one_click_wins(self, client: httpx.AsyncClient) -> None:
        async with get_session() as session:
            user = await repository.upsert_user(session, email_identifier(EMAIL), "abc123")
            user_id = user.id
        params = {"emailhmac": email_identifier(EMAIL), "token": "abc123", "redirect": "/x"}

        responses = await asyncio.gather(
            client.get("/login", params=params), client.get("/login", params=params)
        )

        locations = sorted(response.headers["location"] for response in responses)
        assert locations == [
            "/x",
            "http://shop.example.com/login?error=invalid-token&redirect=/x",
        ]
        async with get_session() as session:
            stored = await repository.get_user_by_email_hmac(session, email_identifier(EMAIL))
            sessions = await repository.list_user_sessions(session, user_id)
        assert stored is not None
        assert stored.login_token is None
        assert len(sessions) == 1

    @pytest.mark.usefixtures("file_session_factory")
    async def test_failed_redemption_keeps_winner_session(
        self, client: httpx.AsyncClient
    ) -> None:
        async with get_session() as session:
            await repository.upsert_user(session, email_identifier(EMAIL), "abc123")
        good = {"emailhmac": email_identifier(EMAIL), "token": "abc123", "redirect": "/x"}
        bad = {**good, "token": "wrong-token"}

        won, lost = await asyncio.gather(
            client.get("/login", params=good), client.get("/login", params=bad)
        )

        assert won.headers["location"] == "/x"
        assert parse_qs(urlsplit(lost.headers["location"]).query)["error"] == ["invalid-token"]
        token = _set_cookies(won)["session-token"].split(";")[0]
        authorize = await client.post(
            "/authorize",
            json={"sessionToken": token, "path": "/courses/python"},
            headers=bearer(AUTH_TOKEN),
        )
        assert authorize.json() == {"error": "Authorization not found"}
