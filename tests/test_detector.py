"""Tests for LLM entity detection."""

import os

import pytest
from unittest.mock import Mock

from tenacity import wait_none

from storyport.config import reset_settings
from storyport.core.cancellation import CancellationToken
from storyport.llm.client import LLMClient, LLMError
from storyport.llm.detector import (
    EntityDetectionError,
    EntityDetector,
    extract_context,
    find_text_position,
)
from storyport.llm.prompts import build_detection_prompt

TEXT = "Elara met Corin at the gate."


@pytest.fixture
def single_attempt(monkeypatch):
    """No retries, so failing calls do not sleep between attempts."""
    monkeypatch.setenv("STORYPORT_MAX_RETRIES", "1")
    reset_settings()


def reply(content):
    return Mock(choices=[Mock(message=Mock(content=content))])


class TestEntityDetector:
    """Tests for EntityDetector."""

    def test_detects_and_matches(self, mock_llm_client, entities):
        result = EntityDetector().detect(TEXT, entities, ["character"])

        assert [e.name for e in result.entities] == ["Elara", "Corin"]
        elara, corin = result.entities
        assert elara.matched_existing_id == "ent-elara"
        assert elara.suggested_aliases == ["Lady Elara"]
        assert corin.matched_existing_id is None
        assert corin.inferred_properties == {"role": "guide"}

    def test_wrong_offsets_are_corrected(self, mock_llm_client, entities):
        corin = EntityDetector().detect(TEXT, entities).entities[1]
        occurrence = corin.occurrences[0]

        assert (occurrence.start_offset, occurrence.end_offset) == (10, 15)
        assert TEXT[occurrence.start_offset:occurrence.end_offset] == "Corin"

    def test_unplaceable_entities_are_dropped(self, mock_llm_client, entities):
        result = EntityDetector().detect("Elara walked alone.", entities)
        assert [e.name for e in result.entities] == ["Elara"]

    def test_unknown_existing_id_is_ignored(self, mock_llm_client):
        result = EntityDetector().detect(TEXT, [])
        assert result.entities[0].matched_existing_id is None

    def test_confidence_filter(self, mock_llm_client, entities):
        result = EntityDetector(min_confidence=0.85).detect(TEXT, entities)
        assert [e.name for e in result.entities] == ["Elara"]

    def test_type_filter(self, mock_llm_client, entities):
        assert EntityDetector().detect(TEXT, entities, ["location"]).entities == []

    def test_max_entities_keeps_most_confident(self, mock_llm_client, entities):
        result = EntityDetector(max_entities=1).detect(TEXT, entities)
        assert [e.name for e in result.entities] == ["Elara"]

    def test_blank_text_skips_the_call(self, mock_llm_client):
        assert EntityDetector().detect("   ").entities == []
        mock_llm_client.assert_not_called()

    def test_cancelled_token_skips_the_call(self, mock_llm_client, entities):
        token = CancellationToken()
        token.cancel()

        result = EntityDetector().detect(TEXT, entities, token=token)

        assert result.entities == []
        mock_llm_client.assert_not_called()

    def test_prompt_and_model(self, mock_llm_client, entities):
        EntityDetector().detect(TEXT, entities, ["character"])

        kwargs = mock_llm_client.call_args.kwargs
        user_message = kwargs["messages"][1]["content"]
        assert kwargs["model"] == "gemini/gemini-2.5-flash"
        assert TEXT in user_message
        assert '"id": "ent-elara"' in user_message

    def test_invalid_entity_types_are_skipped(self, mock_llm_client):
        mock_llm_client.return_value = reply(
            '{"entities": [{"name": "Elara", "type": "deity", "confidence": 1,'
            ' "occurrences": [{"startOffset": 0, "endOffset": 5, "matchedText": "Elara"}]}]}'
        )
        assert EntityDetector().detect(TEXT).entities == []

    def test_non_list_entities(self, mock_llm_client):
        mock_llm_client.return_value = reply('{"entities": {"name": "Elara"}}')
        with pytest.raises(EntityDetectionError):
            EntityDetector().detect(TEXT)

    def test_unreadable_reply(self, mock_llm_client):
        mock_llm_client.return_value = reply("I could not find any entities.")
        with pytest.raises(EntityDetectionError):
            EntityDetector().detect(TEXT)

    def test_provider_failure(self, mock_llm_client, single_attempt):
        mock_llm_client.side_effect = Exception("API connection refused")
        with pytest.raises(EntityDetectionError):
            EntityDetector().detect(TEXT)

    def test_warnings_are_returned(self, mock_llm_client):
        mock_llm_client.return_value = reply(
            '{"entities": [], "warnings": [{"type": "ambiguous", "message": "Two Elaras"}, "plain"]}'
        )
        assert EntityDetector().detect(TEXT).warnings == ["Two Elaras", "plain"]


class TestLLMClient:
    """Tests for the LiteLLM wrapper."""

    def test_complete_json_strips_fences(self, mock_llm_client):
        data = LLMClient().complete_json("text", "system")
        assert len(data["entities"]) == 2

    def test_complete_json_finds_embedded_object(self, mock_llm_client):
        mock_llm_client.return_value = reply('Here you go: {"entities": []} done')
        assert LLMClient().complete_json("text", "system") == {"entities": []}

    def test_empty_content(self, mock_llm_client, single_attempt):
        mock_llm_client.return_value = reply(None)
        with pytest.raises(LLMError):
            LLMClient().complete("text", "system")

    def test_rate_limit_is_retried(self, mock_llm_client):
        client = LLMClient()
        call = client._call_llm.retry_with(wait=wait_none())
        mock_llm_client.side_effect = [Exception("rate_limit exceeded"), reply('{"ok": true}')]

        assert call(client, "text", "system") == '{"ok": true}'
        assert mock_llm_client.call_count == 2

    def test_cancel_stops_retries(self, mock_llm_client):
        token = CancellationToken()

        def fail(**kwargs):
            token.cancel()
            raise Exception("rate_limit exceeded")

        mock_llm_client.side_effect = fail

        with pytest.raises(LLMError, match="Rate limited"):
            LLMClient().complete("text", "system", token=token)
        assert mock_llm_client.call_count == 1

    def test_other_errors_are_not_wrapped(self, mock_llm_client):
        mock_llm_client.side_effect = ValueError("bad argument")
        with pytest.raises(ValueError):
            LLMClient().complete("text", "system")

    def test_explicit_api_key_is_passed(self, mock_llm_client):
        LLMClient(api_key="sk-test").complete("text", "system")
        assert mock_llm_client.call_args.kwargs["api_key"] == "sk-test"

    def test_google_key_is_exported_for_gemini(self, mock_llm_client, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "")
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        reset_settings()
        LLMClient()

        assert os.environ["GEMINI_API_KEY"] == "g-key"


class TestHelpers:
    """Tests for offset helpers and prompt building."""

    def test_find_text_position_prefers_near_match(self):
        text = "Ash " + "x" * 200 + " Ash"
        assert find_text_position(text, "Ash", 200) == (205, 208)
        assert find_text_position(text, "Ash", 0) == (0, 3)

    def test_find_text_position_case_insensitive(self):
        assert find_text_position("the VALE", "Vale", 0) == (4, 8)
        assert find_text_position("nothing", "Vale", 0) is None
        assert find_text_position("text", "", 0) is None

    def test_extract_context(self):
        text = "a" * 10 + "NAME" + "b" * 10
        assert extract_context(text, 10, 14, 3) == "...aaaNAMEbbb..."
        assert extract_context("NAME", 0, 4, 3) == "NAME"

    def test_prompt_without_existing_entities(self):
        prompt = build_detection_prompt("Some text", [], None)

        assert "---TEXT START---\nSome text\n---TEXT END---" in prompt
        assert "Existing Entities" not in prompt
        assert "Only report entities" not in prompt

    def test_prompt_types(self):
        prompt = build_detection_prompt("Some text", [], ["character", "item"])
        assert "Only report entities of these types: character, item" in prompt
