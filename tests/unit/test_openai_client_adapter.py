import base64
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from docflow.extraction.exceptions import ExtractionError, ExtractionNetworkError
from docflow.extraction.models import ClientResponse
from docflow.extraction.openai_client_adapter import OpenAIClientAdapter


def _make_mock_response(content: str | None, usage: bool = True) -> MagicMock:
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]
    if usage:
        response.usage.prompt_tokens = 800
        response.usage.completion_tokens = 40
    else:
        response.usage = None
    return response


def _call(mock_client: MagicMock, images: list[bytes] | None = None) -> ClientResponse:
    with patch(
        "docflow.extraction.openai_client_adapter.openai.OpenAI",
        return_value=mock_client,
    ):
        adapter = OpenAIClientAdapter(api_key="k", timeout_seconds=30, base_url=None)
        return adapter.create_completion(
            model="m",
            temperature=0.1,
            system_prompt="system",
            user_prompt="user",
            images=images or [],
            json_schema={"type": "object"},
        )


class TestOpenAIClientAdapter:
    def test_returns_content_and_usage(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = _make_mock_response('{"ok": true}')

        response = _call(mock_client)

        assert response == ClientResponse(
            content='{"ok": true}', input_tokens=800, output_tokens=40
        )

    def test_missing_usage_counts_zero(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = _make_mock_response("{}", usage=False)

        response = _call(mock_client)

        assert (response.input_tokens, response.output_tokens) == (0, 0)

    def test_sends_images_as_data_urls(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = _make_mock_response("{}")

        _call(mock_client, images=[b"\x89PNG"])

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        user_content = kwargs["messages"][1]["content"]
        encoded = base64.b64encode(b"\x89PNG").decode("ascii")
        assert user_content[0] == {"type": "text", "text": "user"}
        assert user_content[1]["image_url"]["url"] == f"data:image/png;base64,{encoded}"
        assert kwargs["response_format"]["json_schema"]["schema"] == {"type": "object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_raises_error_for_empty_content(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = _make_mock_response(None)
        with pytest.raises(ExtractionError, match="empty response"):
            _call(mock_client)

    def test_raises_error_for_no_choices(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = MagicMock(choices=[])
        with pytest.raises(ExtractionError, match="no choices"):
            _call(mock_client)

    def test_raises_network_error_on_connection_failure(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=MagicMock()
        )
        with pytest.raises(ExtractionNetworkError, match="network error"):
            _call(mock_client)

    def test_raises_network_error_on_timeout(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.side_effect = httpx.TimeoutException("timeout")
        with pytest.raises(ExtractionNetworkError, match="network error"):
            _call(mock_client)

    def test_raises_network_error_on_api_error(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.side_effect = openai.APIError(
            message="server error",
            request=MagicMock(),
            body=None,
        )
        with pytest.raises(ExtractionNetworkError, match="API error"):
            _call(mock_client)

    def test_bad_request_is_permanent(self) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create.side_effect = openai.BadRequestError(
            message="image too large",
            response=httpx.Response(400, request=httpx.Request("POST", "https://api")),
            body=None,
        )
        with pytest.raises(ExtractionError, match="rejected the request") as exc_info:
            _call(mock_client)
        assert not isinstance(exc_info.value, ExtractionNetworkError)
