"""
Tests for the settings pages and the full web application.
"""

import asyncio
import json
from urllib.parse import parse_qs, urlparse

import pytest

from palaver.core.bots import WebBot
from palaver.core.database import JsonUserStore
from palaver.main import create_app
from palaver.models import CalendarService, OfficeToken
from tests.utils import FakeConversation, asgi_client, settings_token, wait_until, wit_intent

FORM = {
    "service": "caldav",
    "url": "https://cal.example.com/dav/",
    "username": "alice",
    "password": "hunter2",
}


async def cancel_all(tasks):
    for task in list(tasks):
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class TestSettingsForm:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_unknown_token(self, make_orchestrator, method):
        app = create_app(make_orchestrator())
        async with asgi_client(app) as client:
            response = await client.request(method, "/settings/not-a-token", data={} if method == "POST" else None)
        assert response.status_code == 404
        assert response.text == "invalid token"

    @pytest.mark.asyncio
    async def test_form_is_rendered(self, make_orchestrator):
        orchestrator = make_orchestrator()
        token = orchestrator.web_sessions.issue()
        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.get(f"/settings/{token}")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert f'action="/settings/{token}"' in response.text
        assert 'name="password"' in response.text
        assert "Office 365" not in response.text

    @pytest.mark.asyncio
    async def test_form_offers_office_sign_in(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.add_office("client-id", "client-secret")
        token = orchestrator.web_sessions.issue()
        try:
            async with asgi_client(create_app(orchestrator)) as client:
                response = await client.get(f"/settings/{token}")
                reloaded = await client.get(f"/settings/{token}")
            assert "login.microsoftonline.com" in response.text
            assert "client_id=client-id" in response.text
            # Reloading offers the same sign-in rather than starting another
            assert reloaded.text == response.text
            assert len(orchestrator._tasks) == 1
            assert len(orchestrator.office.futures) == 1
        finally:
            await cancel_all(orchestrator._tasks)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("form", [
        {},
        dict(FORM, service="office"),
        dict(FORM, password=""),
        {"service": "caldav", "url": "https://cal.example.com/"},
    ])
    async def test_bad_submissions_rejected(self, make_orchestrator, form):
        orchestrator = make_orchestrator()
        token = orchestrator.web_sessions.issue()
        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.post(f"/settings/{token}", data=form)

        assert response.status_code == 400
        assert response.text == "sorry; I did not understand the form"
        # The token stays open for another try
        assert orchestrator.web_sessions.has(token)

    @pytest.mark.asyncio
    async def test_submission_wakes_waiting_conversation(self, make_orchestrator):
        orchestrator = make_orchestrator()
        token = orchestrator.web_sessions.issue()
        waiter = asyncio.create_task(orchestrator.web_sessions.get(token))

        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.post(f"/settings/{token}", data=FORM)

        assert response.text == "got it; thanks!"
        settings = await waiter
        assert settings.service == CalendarService.CALDAV
        assert settings.caldav.username == "alice"
        assert not orchestrator.web_sessions.has(token)

    @pytest.mark.asyncio
    async def test_second_submission_conflicts(self, make_orchestrator):
        orchestrator = make_orchestrator()
        token = orchestrator.web_sessions.issue()
        async with asgi_client(create_app(orchestrator)) as client:
            first = await client.post(f"/settings/{token}", data=FORM)
            second = await client.post(f"/settings/{token}", data=dict(FORM, username="mallory"))

        assert first.status_code == 200
        assert second.status_code == 409
        assert (await orchestrator.web_sessions.get(token)).caldav.username == "alice"


class TestOfficeSignIn:

    @pytest.mark.asyncio
    async def test_callback_resumes_sign_in(self, make_orchestrator):
        orchestrator = make_orchestrator()
        office = orchestrator.add_office("client-id", "client-secret")
        auth = office.authenticate()
        assert parse_qs(urlparse(auth.url).query)["state"] == [auth.state]
        waiter = asyncio.create_task(office.futures.get(auth.state))

        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.get("/office/callback", params={"state": auth.state, "code": "c0de"})

        assert response.status_code == 200
        assert await waiter == "c0de"

    @pytest.mark.asyncio
    async def test_callback_rejects_unknown_state(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.add_office("client-id", "client-secret")
        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.get("/office/callback", params={"state": "forged", "code": "c0de"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_callback_error_abandons_sign_in(self, make_orchestrator):
        orchestrator = make_orchestrator()
        office = orchestrator.add_office("client-id", "client-secret")
        auth = office.authenticate()
        waiter = asyncio.create_task(office.futures.get(auth.state))
        await asyncio.sleep(0)

        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.get("/office/callback", params={
                "state": auth.state,
                "error_description": "user declined",
            })

        assert response.status_code == 400
        assert response.text == "user declined"
        with pytest.raises(asyncio.CancelledError):
            await waiter

    @pytest.mark.asyncio
    async def test_sign_in_fills_settings_token(self, make_orchestrator, monkeypatch):
        orchestrator = make_orchestrator()
        office = orchestrator.add_office("client-id", "client-secret")
        grants = []

        async def fake_request_token(grant):
            grants.append(grant)
            return OfficeToken(access_token="graph-token")

        monkeypatch.setattr(office, "request_token", fake_request_token)

        token = orchestrator.web_sessions.issue()
        settings = asyncio.create_task(orchestrator.web_sessions.get(token))
        auth = office.authenticate()
        orchestrator.spawn(orchestrator.complete_office_sign_in(token, auth))
        await asyncio.sleep(0)

        office.futures.put(auth.state, "c0de")
        result = await settings

        assert result.service == CalendarService.OFFICE
        assert result.office_token.access_token == "graph-token"
        assert grants[0]["code"] == "c0de"


class TestApplication:

    @pytest.mark.asyncio
    async def test_health(self, make_orchestrator):
        async with asgi_client(create_app(make_orchestrator())) as client:
            response = await client.get("/health")
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_unknown_path(self, make_orchestrator):
        async with asgi_client(create_app(make_orchestrator())) as client:
            response = await client.post("/nowhere/at/all")
        assert response.status_code == 404
        assert response.text == "not found"

    @pytest.mark.asyncio
    async def test_backends_added_after_app_are_served(self, make_orchestrator):
        orchestrator = make_orchestrator()
        app = create_app(orchestrator)
        orchestrator.add_bot(WebBot())
        async with asgi_client(app) as client:
            response = await client.get("/chat/alice")
        assert response.json() == {"messages": []}

    @pytest.mark.asyncio
    async def test_calendar_set_up_through_web_chat(self, make_orchestrator):
        orchestrator = make_orchestrator({"show my calendar": wit_intent("show_calendar")})
        bot = orchestrator.add_bot(WebBot())
        received = []

        async def poll(client, count):
            async def fetch():
                response = await client.get("/chat/alice")
                received.extend(response.json()["messages"])
                return len(received) >= count

            for _ in range(200):
                if await fetch():
                    return
                await asyncio.sleep(0.005)
            raise AssertionError(f"only got {received}")

        async with asgi_client(create_app(orchestrator)) as client:
            response = await client.post("/chat/alice", data={"text": "show my calendar"})
            assert response.json() == {"handled": False}

            await poll(client, 2)
            assert received[0] == "let's get your calendar!"
            token = settings_token(received[1])

            form = await client.get(f"/settings/{token}")
            assert form.status_code == 200
            submitted = await client.post(f"/settings/{token}", data=FORM)
            assert submitted.text == "got it; thanks!"

            await poll(client, 3)
            await bot.drain()

        assert received[2] == "2026-10-18T09:00:00+00:00: standup\n2026-10-19T14:00:00+00:00: dentist"
        user = await orchestrator.users.get_or_create("web:alice")
        assert user.settings.caldav.url == FORM["url"]


class TestSettingsIsolation:

    @pytest.mark.asyncio
    async def test_tokens_and_sign_in_states_do_not_cross(self, make_orchestrator, store):
        orchestrator = make_orchestrator({"cal": wit_intent("show_calendar")})
        orchestrator.add_office("client-id", "client-secret")
        conv = FakeConversation()
        task = asyncio.create_task(orchestrator.interact("cal", conv))
        token = settings_token(await wait_until(lambda: next((t for t in conv.sent if "/settings/" in t), None)))

        async with asgi_client(create_app(orchestrator)) as client:
            await client.get(f"/settings/{token}")
            state = orchestrator.office_sign_in(token).state

            wrong_callback = await client.get("/office/callback", params={"state": token, "code": "junk"})
            wrong_form = await client.post(f"/settings/{state}", data=FORM)
            assert wrong_callback.status_code == 404
            assert wrong_form.status_code == 404
            assert orchestrator.web_sessions.has(token)
            with open(store.path) as fh:
                assert json.load(fh)["users"]["test:u1"]["settings"]["service"] is None

            submitted = await client.post(f"/settings/{token}", data=FORM)
            assert submitted.status_code == 200
            await task

        reloaded = await JsonUserStore(store.path).get_or_create("test:u1")
        assert reloaded.settings.service == CalendarService.CALDAV
        assert reloaded.settings.caldav.url == FORM["url"]

    @pytest.mark.asyncio
    async def test_reloaded_form_leaves_nothing_behind(self, make_orchestrator):
        orchestrator = make_orchestrator({"cal": wit_intent("show_calendar")})
        office = orchestrator.add_office("client-id", "client-secret")
        conv = FakeConversation()
        task = asyncio.create_task(orchestrator.interact("cal", conv))
        token = settings_token(await wait_until(lambda: next((t for t in conv.sent if "/settings/" in t), None)))

        async with asgi_client(create_app(orchestrator)) as client:
            pages = [await client.get(f"/settings/{token}") for _ in range(5)]
            assert len({page.text for page in pages}) == 1
            assert len(orchestrator._tasks) == 1
            assert len(office.futures) == 1

            await client.post(f"/settings/{token}", data=FORM)
            await task

        await wait_until(lambda: not orchestrator._tasks)
        assert len(orchestrator.web_sessions) == 0
        assert len(office.futures) == 0
        assert orchestrator._office_sign_ins == {}

    @pytest.mark.asyncio
    async def test_expired_settings_request_abandons_sign_in(self, make_orchestrator):
        orchestrator = make_orchestrator({"cal": wit_intent("show_calendar")}, settings_timeout=0.2)
        office = orchestrator.add_office("client-id", "client-secret")
        conv = FakeConversation()
        task = asyncio.create_task(orchestrator.interact("cal", conv))
        token = settings_token(await wait_until(lambda: next((t for t in conv.sent if "/settings/" in t), None)))

        async with asgi_client(create_app(orchestrator)) as client:
            await client.get(f"/settings/{token}")
        await task

        await wait_until(lambda: not orchestrator._tasks)
        assert len(orchestrator.web_sessions) == 0
        assert len(office.futures) == 0
