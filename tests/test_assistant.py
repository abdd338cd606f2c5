import httpx
import pytest

from conftest import API
from loconomy_api.app.core.config import reload_settings
from loconomy_api.app.core.i18n import resolve_locale
from loconomy_api.app.services.assistant_service import UnrecognizedCommandError, parse_voice_command


@pytest.mark.parametrize(
    "text, locale, action, data",
    [
        ("Find a plumber in Austin", "en", "search", {"query": "a plumber in austin"}),
        ("buscar un electricista", "es", "search", {"query": "un electricista"}),
        ("show me my bookings", "en", "navigate", {"destination": "my bookings"}),
        ("please cancel", "en", "cancel", {}),
        ("yes please", "en", "confirm", {}),
        ("nein danke", "de", "deny", {}),
        ("réserver demain", "fr-CA", "book", {}),
    ],
)
def test_parse_voice_command(text, locale, action, data):
    result = parse_voice_command(text, locale)
    assert result.action == action
    assert result.data == data


def test_voice_command_replies_in_locale():
    assert parse_voice_command("hilfe", "de").reply.startswith("Willkommen bei Loconomy")
    assert parse_voice_command("buscar", "es").reply == "Buscando servicios..."
    with pytest.raises(UnrecognizedCommandError):
        parse_voice_command("the weather is nice", "en")


def test_resolve_locale():
    assert resolve_locale(None) == "en"
    assert resolve_locale("fr-CH, fr;q=0.9, en;q=0.8") == "fr"
    assert resolve_locale("ja, de;q=0.5, es;q=0.7") == "es"
    assert resolve_locale("it") == "en"


def test_voice_command_endpoint(client):
    response = client.post(f"{API}/assistant/voice-command", json={"text": "find a cleaner"})
    assert response.status_code == 200
    assert response.json() == {
        "action": "search",
        "data": {"query": "a cleaner"},
        "locale": "en",
        "reply": "Searching for services...",
    }


def test_unrecognized_voice_command(client):
    response = client.post(
        f"{API}/assistant/voice-command", json={"text": "hola amigo"}, headers={"Accept-Language": "es-ES"}
    )
    assert response.status_code == 422
    assert response.json()["detail"] == "No entendí eso. ¿Podrías repetirlo?"


def test_chat_requires_configuration(client, consumer):
    response = client.post(
        f"{API}/assistant/chat", json={"messages": [{"role": "user", "content": "Hi"}]}, headers=consumer["headers"]
    )
    assert response.status_code == 503


def test_chat_requires_login(client):
    response = client.post(f"{API}/assistant/chat", json={"messages": [{"role": "user", "content": "Hi"}]})
    assert response.status_code == 401


def test_chat_forwards_conversation(client, consumer, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    reload_settings()
    sent = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.update(url=url, json=json, headers=headers)
        return httpx.Response(
            200,
            json={
                "model": "gpt-3.5-turbo",
                "choices": [{"message": {"role": "assistant", "content": "  Try a licensed plumber.  "}}],
                "usage": {"total_tokens": 42},
            },
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(httpx, "post", fake_post)
    response = client.post(
        f"{API}/assistant/chat",
        json={"messages": [{"role": "user", "content": "My sink leaks"}]},
        headers=consumer["headers"],
    )
    assert response.status_code == 200, response.text
    assert response.json() == {"reply": "Try a licensed plumber.", "model": "gpt-3.5-turbo", "usage": {"total_tokens": 42}}

    assert sent["url"] == "https://api.openai.com/v1/chat/completions"
    assert sent["headers"] == {"Authorization": "Bearer sk-test"}
    system, user = sent["json"]["messages"]
    assert system["role"] == "system"
    assert "Home Maintenance" in system["content"]
    assert user == {"role": "user", "content": "My sink leaks"}


def test_chat_upstream_failure(client, consumer, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    reload_settings()

    def broken_post(url, json=None, headers=None, timeout=None):
        return httpx.Response(200, json={"choices": []}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", broken_post)
    response = client.post(
        f"{API}/assistant/chat", json={"messages": [{"role": "user", "content": "Hi"}]}, headers=consumer["headers"]
    )
    assert response.status_code == 502
