"""Tests for the webhook and AI provider proxy routes."""

import base64
from unittest.mock import AsyncMock, patch

import pytest

from conftest import update_settings
from visidash.ai_client import (
    InvocationResult,
    TransportError,
    TransportTimeout,
    decode_body,
)

INVOKE = "visidash.server.routes.proxy.invoke_ai_provider"

JSON_OK = InvocationResult(
    ok=True, status=200, status_text="OK", body={"chart": "bar"}, body_is_json=True
)


def basic(username, password):
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


@pytest.fixture
def mock_invoke():
    with patch(INVOKE, new=AsyncMock(return_value=JSON_OK)) as mocked:
        yield mocked


class TestQueryProxy:
    def test_nothing_configured(self, client, mock_invoke):
        response = client.post("/api/query", json={"question": "hi"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "No webhook or AI provider URL has been configured yet."
        }
        mock_invoke.assert_not_awaited()

    def test_invalid_json(self, client, mock_invoke):
        response = client.post(
            "/api/query", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON payload"}

    def test_forwards_to_webhook_with_basic_auth(self, client, admin, mock_invoke):
        update_settings(
            client,
            admin["id"],
            webhookUrl="https://hooks.example.com/q",
            webhookUsername="n8n",
            webhookPassword="pw",
        )

        response = client.post("/api/query", json={"question": "Sales?"})

        assert response.status_code == 200
        assert response.json() == {"chart": "bar"}

        args, kwargs = mock_invoke.await_args
        assert args == ("https://hooks.example.com/q", None, {"question": "Sales?"})
        assert kwargs["headers"] == {"Authorization": basic("n8n", "pw")}
        assert kwargs["timeout_ms"] is None

    def test_provider_key_not_sent_to_webhook(self, client, admin, mock_invoke):
        update_settings(
            client,
            admin["id"],
            webhookUrl="https://hooks.example.com/q",
            aiProviderUrl="https://ai.example.com/chat",
            aiProviderApiKey="sk-test",
        )

        client.post("/api/query", json={"question": "Sales?"})

        args, _ = mock_invoke.await_args
        assert args[0] == "https://hooks.example.com/q"
        assert args[1] is None
        assert args[2] == {"question": "Sales?"}

    def test_provider_gets_key_and_generation_parameters(self, client, admin, mock_invoke):
        update_settings(
            client,
            admin["id"],
            aiProviderUrl="https://ai.example.com/chat",
            aiProviderApiKey="sk-test",
            aiTemperature=0.2,
            aiSystemPrompt="You draw charts.",
            aiDisableTokenCount=True,
            aiStop=["END"],
        )

        client.post("/api/query", json={"question": "Sales?"})

        args, _ = mock_invoke.await_args
        assert args[0] == "https://ai.example.com/chat"
        assert args[1] == "sk-test"
        assert args[2] == {
            "question": "Sales?",
            "temperature": 0.2,
            "top_p": 1.0,
            "max_tokens": 4096,
            "stream": False,
            "k": 5,
            "retrieval_method": "none",
            "frequency_penalty": 0.0,
            "presence_penalty": 0.0,
            "system": "You draw charts.",
            "stream_options": {"include_usage": False},
            "stop": ["END"],
        }

    def test_provider_without_key_gets_payload_untouched(self, client, admin, mock_invoke):
        update_settings(client, admin["id"], aiProviderUrl="https://ai.example.com/chat")

        client.post("/api/query", json={"question": "Sales?"})

        args, _ = mock_invoke.await_args
        assert args[1:] == (None, {"question": "Sales?"})

    @pytest.mark.parametrize("seconds, expected_ms", [(60, 60_000), (900, 600_000)])
    def test_timeout_is_clamped(self, client, admin, mock_invoke, seconds, expected_ms):
        update_settings(
            client,
            admin["id"],
            webhookUrl="https://hooks.example.com/q",
            timeoutEnabled=True,
            timeoutSeconds=seconds,
        )

        client.post("/api/query", json={})

        assert mock_invoke.await_args.kwargs["timeout_ms"] == expected_ms

    def test_relays_upstream_error_text(self, client, admin):
        update_settings(client, admin["id"], webhookUrl="https://hooks.example.com/q")
        failure = InvocationResult(ok=False, status=500, body="workflow crashed")

        with patch(INVOKE, new=AsyncMock(return_value=failure)):
            response = client.post("/api/query", json={})

        assert response.status_code == 500
        assert response.text == "workflow crashed"
        assert response.headers["content-type"].startswith("text/plain")

    def test_non_standard_json_constants_are_relayed_as_text(self, client, admin):
        update_settings(client, admin["id"], webhookUrl="https://hooks.example.com/q")
        body, is_json = decode_body('{"v": NaN}')
        result = InvocationResult(
            ok=True,
            status=200,
            body=body,
            body_is_json=is_json,
            content_type="application/json",
        )

        with patch(INVOKE, new=AsyncMock(return_value=result)):
            response = client.post("/api/query", json={})

        assert response.status_code == 200
        assert response.text == '{"v": NaN}'

    def test_keeps_upstream_content_type_for_text(self, client, admin):
        update_settings(client, admin["id"], webhookUrl="https://hooks.example.com/q")
        page = InvocationResult(
            ok=False,
            status=502,
            body="<h1>Bad gateway</h1>",
            content_type="text/html; charset=utf-8",
        )

        with patch(INVOKE, new=AsyncMock(return_value=page)):
            response = client.post("/api/query", json={})

        assert response.status_code == 502
        assert response.text == "<h1>Bad gateway</h1>"
        assert response.headers["content-type"] == "text/html; charset=utf-8"

    def test_timeout_maps_to_504(self, client, admin):
        update_settings(client, admin["id"], webhookUrl="https://hooks.example.com/q")

        with patch(INVOKE, new=AsyncMock(side_effect=TransportTimeout("slow"))):
            response = client.post("/api/query", json={})

        assert response.status_code == 504
        assert response.json() == {"error": "Webhook request timed out"}

    def test_transport_failure_maps_to_502(self, client, admin):
        update_settings(client, admin["id"], webhookUrl="https://hooks.example.com/q")

        with patch(INVOKE, new=AsyncMock(side_effect=TransportError("refused"))):
            response = client.post("/api/query", json={})

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to reach webhook"}


class TestPromptHelperProxy:
    def test_nothing_configured(self, client, mock_invoke):
        response = client.post("/api/prompt-helper", json={"prompt": "help"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Prompt helper webhook URL or AI provider not configured"
        }

    def test_invalid_target_url(self, client, admin, mock_invoke):
        update_settings(client, admin["id"], promptHelperWebhookUrl="helper/path")

        response = client.post("/api/prompt-helper", json={"prompt": "help"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid webhook / AI provider URL configured"}
        mock_invoke.assert_not_awaited()

    def test_forwards_to_helper_webhook(self, client, admin, mock_invoke):
        update_settings(
            client,
            admin["id"],
            promptHelperWebhookUrl="https://hooks.example.com/helper",
            promptHelperUsername="helper",
            promptHelperPassword="secret",
            promptHelperHeaders={"X-Source": "dashboard"},
        )

        response = client.post("/api/prompt-helper", json={"prompt": "help"})

        assert response.status_code == 200
        assert response.json() == {"chart": "bar"}
        args, kwargs = mock_invoke.await_args
        assert args == ("https://hooks.example.com/helper", None, {"prompt": "help"})
        assert kwargs["headers"] == {
            "X-Source": "dashboard",
            "Authorization": basic("helper", "secret"),
        }

    def test_provider_takes_precedence(self, client, admin, mock_invoke):
        update_settings(
            client,
            admin["id"],
            promptHelperWebhookUrl="https://hooks.example.com/helper",
            aiProviderUrl="https://ai.example.com/chat",
            aiProviderApiKey="sk-test",
        )

        client.post("/api/prompt-helper", json={"prompt": "help"})

        args, _ = mock_invoke.await_args
        assert args[:2] == ("https://ai.example.com/chat", "sk-test")

    def test_upstream_failure_status_is_relayed(self, client, admin):
        update_settings(client, admin["id"], promptHelperWebhookUrl="https://hooks.example.com/helper")
        failure = InvocationResult(ok=False, status=503, status_text="Service Unavailable", body="")

        with patch(INVOKE, new=AsyncMock(return_value=failure)):
            response = client.post("/api/prompt-helper", json={"prompt": "help"})

        assert response.status_code == 503
        assert response.json() == {"error": "Webhook responded with 503: Service Unavailable"}

    def test_transport_failure(self, client, admin):
        update_settings(client, admin["id"], promptHelperWebhookUrl="https://hooks.example.com/helper")

        with patch(INVOKE, new=AsyncMock(side_effect=TransportError("refused"))):
            response = client.post("/api/prompt-helper", json={"prompt": "help"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to proxy request to prompt helper webhook"}
