"""Tests for text-generation clients."""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from lexicon_cleanup.config import GenerationConfig
from lexicon_cleanup.engine import CleanupEngine
from lexicon_cleanup.errors import GenerationError
from lexicon_cleanup.llm.client import (
    FakeFormattingClient,
    OpenAIFormattingClient,
    get_generation_client,
)
from lexicon_cleanup.llm.prompts import FORMAT_PROMPT_VERSION, build_user_prompt
from lexicon_cleanup.models.record import LexiconRecord


def _record(text: str = "foo  bar", title: str = "Foo") -> LexiconRecord:
    return LexiconRecord(record_id="r1", title=title, text=text)


def _chat_response(content: str, model: str = "gpt-4o-mini") -> Mock:
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.raise_for_status.return_value = None
    mock_response.json.return_value = {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 30},
    }
    return mock_response


def test_fake_client_strips_markup_and_whitespace():
    record = _record(text="<p>Short for King&nbsp;Of   Birds.</p>")

    result = FakeFormattingClient().generate_formatting(record)

    assert result.formatted_text == "Short for King Of Birds."
    assert result.confidence == 0.9
    assert result.metadata["provider"] == "fake"
    assert result.metadata["prompt_version"] == FORMAT_PROMPT_VERSION


def test_fake_client_is_deterministic_and_keeps_clean_text():
    record = _record(text="Already clean.")
    client = FakeFormattingClient()

    first = client.generate_formatting(record)
    second = client.generate_formatting(record)

    assert first.formatted_text == second.formatted_text == "Already clean."
    assert first.confidence == 1.0


def test_fake_client_formats_title():
    result = FakeFormattingClient().generate_formatting(_record(title="  <b>Foo</b>  "), field="title")

    assert result.formatted_text == "Foo"


def test_openai_client_requires_api_key():
    """Test that the OpenAI client raises if no API key is available."""
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            OpenAIFormattingClient()


def test_openai_client_reads_env_var():
    with patch.dict("os.environ", {"OPENAI_API_KEY": "env-key"}):
        client = OpenAIFormattingClient()
        assert client.api_key == "env-key"
        assert client.provider_model == "openai/gpt-4o-mini"


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_parses_response(mock_post):
    content = json.dumps({"formatted_text": "Foo Bar", "reason": "Fixed spacing", "confidence": 0.95})
    mock_post.return_value = _chat_response(content)
    config = GenerationConfig(model="gpt-4o-mini", timeout_seconds=12)
    record = _record()

    result = OpenAIFormattingClient(config=config, api_key="test-key").generate_formatting(record)

    assert result.formatted_text == "Foo Bar"
    assert result.reason == "Fixed spacing"
    assert result.confidence == 0.95
    assert result.metadata["provider"] == "openai"
    assert result.metadata["model"] == "gpt-4o-mini"
    assert result.metadata["prompt_tokens"] == 120
    assert result.metadata["completion_tokens"] == 30
    # The record is never modified by generation
    assert record.text == "foo  bar"

    args, kwargs = mock_post.call_args
    assert args[0] == config.api_url
    assert kwargs["timeout"] == 12
    assert kwargs["headers"]["Authorization"] == "Bearer test-key"
    messages = kwargs["json"]["messages"]
    assert messages[1]["content"] == build_user_prompt("Foo", "text", "foo  bar")


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_accepts_fenced_json(mock_post):
    content = "```json\n" + json.dumps({"formatted_text": "Foo Bar"}) + "\n```"
    mock_post.return_value = _chat_response(content)

    result = OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())

    assert result.formatted_text == "Foo Bar"
    assert result.confidence == 0.9


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_clamps_confidence(mock_post):
    mock_post.return_value = _chat_response(json.dumps({"formatted_text": "Foo", "confidence": 7}))

    result = OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())

    assert result.confidence == 1.0


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_timeout(mock_post):
    mock_post.side_effect = requests.Timeout("read timed out")

    with pytest.raises(GenerationError, match="timed out"):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_http_error(mock_post):
    mock_response = Mock()
    mock_response.status_code = 500
    mock_response.text = "Internal Server Error"
    mock_response.raise_for_status.side_effect = requests.HTTPError(response=mock_response)
    mock_post.return_value = mock_response

    with pytest.raises(GenerationError, match="500"):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_network_error(mock_post):
    mock_post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(GenerationError, match="Network error"):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@pytest.mark.parametrize(
    "content",
    [
        "",
        "not json at all",
        json.dumps(["Foo Bar"]),
        json.dumps({"reason": "forgot the text"}),
        json.dumps({"formatted_text": "   "}),
    ],
)
@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_unusable_output(mock_post, content):
    mock_post.return_value = _chat_response(content)

    with pytest.raises(GenerationError):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_missing_choices(mock_post):
    mock_response = Mock()
    mock_response.raise_for_status.return_value = None
    mock_response.json.return_value = {"error": "nope"}
    mock_post.return_value = mock_response

    with pytest.raises(GenerationError, match="no message content"):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@pytest.mark.parametrize("content", [123, ["Foo Bar"], {"formatted_text": "Foo Bar"}, None])
@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_non_text_content(mock_post, content):
    """Test that message content of the wrong type is a generation failure."""
    mock_post.return_value = _chat_response(content)

    with pytest.raises(GenerationError):
        OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())


@pytest.mark.parametrize("raw_confidence", ["NaN", "Infinity", "-Infinity", "1e999", '"high"', "null"])
@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_unusable_confidence_falls_back(mock_post, raw_confidence):
    mock_post.return_value = _chat_response(
        '{"formatted_text": "Foo Bar", "confidence": ' + raw_confidence + "}"
    )

    result = OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())

    assert result.formatted_text == "Foo Bar"
    assert 0.0 <= result.confidence <= 1.0


@pytest.mark.parametrize("usage", ["120 tokens", [120, 30], 42])
@patch("lexicon_cleanup.llm.client.requests.post")
def test_openai_client_ignores_malformed_usage(mock_post, usage):
    mock_response = _chat_response(json.dumps({"formatted_text": "Foo Bar"}))
    mock_response.json.return_value["usage"] = usage
    mock_post.return_value = mock_response

    result = OpenAIFormattingClient(api_key="test-key").generate_formatting(_record())

    assert result.formatted_text == "Foo Bar"
    assert result.metadata["prompt_tokens"] is None
    assert result.metadata["completion_tokens"] is None


@patch("lexicon_cleanup.llm.client.requests.post")
def test_malformed_responses_do_not_stop_the_batch(mock_post, cleanup_config, seed):
    """Test that a batch of non-text responses is reported as failures."""
    mock_post.return_value = _chat_response(123)
    client = OpenAIFormattingClient(api_key="test-key")

    with CleanupEngine(cleanup_config, client=client) as engine:
        seed(engine.store, ("r1", "foo  bar"), ("r2", "baz  qux"))
        report = engine.run_cleanup_pass()

        assert report.selected == 2
        assert report.failed == 2
        assert report.proposed == 0
        assert engine.ledger.list_processed() == set()


def test_get_generation_client_selection():
    with patch.dict("os.environ", {}, clear=True):
        assert get_generation_client("fake").engine_name == "fake"
        assert get_generation_client("auto").engine_name == "fake"
        with pytest.raises(ValueError):
            get_generation_client("openai")

    with patch.dict("os.environ", {"OPENAI_API_KEY": "k"}):
        assert get_generation_client("auto").engine_name == "openai"

    with pytest.raises(ValueError, match="Unsupported engine"):
        get_generation_client("llama")


def test_unsupported_field():
    with pytest.raises(ValueError):
        FakeFormattingClient().generate_formatting(_record(), field="aliases")
