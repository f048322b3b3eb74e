from __future__ import annotations

import logging

import pytest

from backend.llm.normalizers import (
    EXTRACTION_FAILED,
    convert_gpt5_format,
    extract_claude_content,
    extract_gemini_content,
    extract_openai_content,
    extract_reasoning_content,
    extract_responses_content,
    extract_token_usage,
    get_extractor,
)
from backend.llm.routing import ProviderFormat


@pytest.mark.parametrize(
    "extractor",
    [
        extract_openai_content,
        extract_claude_content,
        extract_gemini_content,
        extract_responses_content,
    ],
)
@pytest.mark.parametrize("payload", [None, [], "text", 3, {}, {"id": "x", "usage": {}}])
def test_extractors_never_raise_on_unusable_bodies(extractor, payload) -> None:
    assert extractor(payload) is EXTRACTION_FAILED


def test_get_extractor_maps_every_format() -> None:
    assert get_extractor(ProviderFormat.CLAUDE) is extract_claude_content
    assert get_extractor("responses") is extract_responses_content


# convert_gpt5_format ------------------------------------------------------------


def test_convert_population_lines() -> None:
    assert convert_gpt5_format("Population 3: Fibroblast") == ">Fibroblast<"


def test_convert_keeps_bracketed_answer() -> None:
    assert convert_gpt5_format(">T cell (CD8)<") == ">T cell (CD8)<"


def test_convert_strips_reasoning_preamble() -> None:
    text = "Reasoning process: many markers\r\n\r\nFinal answer: >B cell (naive)<"
    assert convert_gpt5_format(text) == ">B cell (naive)<"


def test_convert_keeps_text_when_final_answer_is_empty() -> None:
    text = "Reasoning process: thinking\n\nFinal answer: "
    assert convert_gpt5_format(text) == text


def test_convert_passes_through_non_strings() -> None:
    assert convert_gpt5_format(None) is None
    assert convert_gpt5_format("") == ""


# OpenAI chat completions --------------------------------------------------------


def test_openai_message_content() -> None:
    payload = {"choices": [{"message": {"role": "assistant", "content": ">NK cell (CD56bright)<"}}]}
    assert extract_openai_content(payload) == ">NK cell (CD56bright)<"


def test_openai_reasoning_content_is_merged_and_converted() -> None:
    payload = {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "reasoning_content": "NKG7 and GNLY are high",
                    "content": ">NK cell (cytotoxic)<",
                }
            }
        ]
    }
    assert extract_openai_content(payload) == ">NK cell (cytotoxic)<"


def test_openai_content_parts_are_joined() -> None:
    payload = {
        "choices": [
            {"message": {"content": [{"type": "text", "text": ">Mast cell"}, {"type": "text", "text": "(TPSAB1+)<"}]}}
        ]
    }
    assert extract_openai_content(payload) == ">Mast cell\n(TPSAB1+)<"


def test_openai_empty_content_with_length_finish_reason() -> None:
    payload = {"choices": [{"message": {"role": "assistant", "content": ""}, "finish_reason": "length"}]}
    assert extract_openai_content(payload) == (
        "Response was truncated due to length limit. No content was generated."
    )


def test_openai_empty_content_uses_other_message_field() -> None:
    payload = {"choices": [{"message": {"role": "assistant", "content": None, "refusal": "I cannot"}}]}
    assert extract_openai_content(payload) == "I cannot"


def test_openai_legacy_completion_text() -> None:
    assert extract_openai_content({"choices": [{"text": ">Monocyte<"}]}) == ">Monocyte<"


def test_openai_top_level_fallbacks() -> None:
    assert extract_openai_content({"response": ">Platelet<"}) == ">Platelet<"
    assert (
        extract_openai_content({"id": "abc", "answer": ">Erythrocyte (mature)<"})
        == ">Erythrocyte (mature)<"
    )


def test_openai_metadata_only_fails() -> None:
    payload = {"id": "chatcmpl-123456789", "model": "deepseek-r1-250120", "object": "chat.completion"}
    assert extract_openai_content(payload) is EXTRACTION_FAILED


# Claude -------------------------------------------------------------------------


def test_claude_first_text_block() -> None:
    payload = {
        "content": [
            {"type": "tool_use", "id": "toolu_1"},
            {"type": "text", "text": ">Endothelial cell (venous)<"},
            {"type": "text", "text": "ignored"},
        ]
    }
    assert extract_claude_content(payload) == ">Endothelial cell (venous)<"


def test_claude_strips_think_tags_and_whitespace() -> None:
    payload = {"content": "<think>PECAM1\nVWF</think>\n  >Endothelial   cell<  "}
    assert extract_claude_content(payload) == ">Endothelial cell<"


def test_claude_only_thinking_fails() -> None:
    assert extract_claude_content({"content": "<think>hmm</think>"}) is EXTRACTION_FAILED


# Gemini -------------------------------------------------------------------------


def test_gemini_gateway_shape() -> None:
    payload = {"choices": [{"message": {"content": ">Hepatocyte<"}}]}
    assert extract_gemini_content(payload) == ">Hepatocyte<"


def test_gemini_native_shape_skips_thought_part() -> None:
    payload = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "thinking about ALB", "thought": True},
                        {"text": "Population 1: Hepatocyte"},
                    ]
                }
            }
        ],
        "usageMetadata": {"totalTokenCount": 77},
    }
    assert extract_gemini_content(payload) == ">Hepatocyte<"
    assert extract_token_usage(payload) == 77


def test_gemini_candidate_text() -> None:
    assert extract_gemini_content({"candidates": [{"text": ">Kupffer cell<"}]}) == ">Kupffer cell<"


# Responses ----------------------------------------------------------------------


def test_responses_output_text() -> None:
    payload = {"id": "resp_1", "output_text": ">Plasma cell (IgA)<", "usage": {"input_tokens": 10, "output_tokens": 5}}
    assert extract_responses_content(payload) == ">Plasma cell (IgA)<"
    assert extract_token_usage(payload) == 15


def test_responses_message_item_preferred_over_reasoning() -> None:
    payload = {
        "output": [
            {"type": "reasoning", "id": "rs_abc123", "summary": [{"type": "summary_text", "text": "thinking"}]},
            {
                "type": "message",
                "id": "msg_1",
                "content": [{"type": "output_text", "text": "Population 0: Basal cell"}],
            },
        ]
    }
    assert extract_responses_content(payload) == ">Basal cell<"


def test_responses_never_returns_reasoning_ids() -> None:
    payload = {"output": [{"type": "reasoning", "id": "rs_abc123", "content": "rs_abc123"}]}
    assert extract_responses_content(payload) is EXTRACTION_FAILED


def test_responses_reasoning_summary_when_no_message() -> None:
    payload = {
        "output": [
            {"type": "reasoning", "id": "rs_abc123", "summary": [{"type": "summary_text", "text": ">Goblet cell<"}]}
        ]
    }
    assert extract_responses_content(payload) == ">Goblet cell<"


def test_responses_incomplete_warns(caplog: pytest.LogCaptureFixture) -> None:
    payload = {
        "status": "incomplete",
        "incomplete_details": {"reason": "max_output_tokens"},
        "output_text": ">Tuft cell<",
    }
    with caplog.at_level(logging.WARNING, logger="smartanno.normalizers"):
        assert extract_responses_content(payload) == ">Tuft cell<"
    assert "max_output_tokens" in caplog.text


def test_token_usage_defaults_to_zero() -> None:
    assert extract_token_usage({"choices": []}) == 0
    assert extract_token_usage(None) == 0


# Reasoning traces ---------------------------------------------------------------


def test_reasoning_content_is_kept_apart_from_answer() -> None:
    payload = {
        "choices": [
            {"message": {"reasoning_content": "CD3E and IL7R point to T cells", "content": ">T cell (CD4)<"}}
        ]
    }

    assert extract_openai_content(payload) == ">T cell (CD4)<"
    assert extract_reasoning_content(payload, ProviderFormat.OPENAI) == "CD3E and IL7R point to T cells"


def test_claude_reasoning_from_thinking_blocks_and_think_tags() -> None:
    blocks = {
        "content": [
            {"type": "thinking", "thinking": "PECAM1 is endothelial"},
            {"type": "text", "text": ">Endothelial cell<"},
        ]
    }
    tagged = {"content": "<think>ALB and APOA1</think>>Hepatocyte<"}

    assert extract_reasoning_content(blocks, ProviderFormat.CLAUDE) == "PECAM1 is endothelial"
    assert extract_reasoning_content(tagged, ProviderFormat.CLAUDE) == "ALB and APOA1"


def test_gemini_reasoning_from_thought_parts() -> None:
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": "thinking about ALB", "thought": True}, {"text": ">Hepatocyte<"}]}}
        ]
    }
    assert extract_reasoning_content(payload, ProviderFormat.GEMINI) == "thinking about ALB"


def test_responses_reasoning_from_summary() -> None:
    payload = {
        "output": [
            {"type": "reasoning", "id": "rs_abc123", "summary": [{"type": "summary_text", "text": "KRT5 marks basal cells"}]},
            {"type": "message", "content": [{"type": "output_text", "text": ">Basal cell<"}]},
        ]
    }
    assert extract_reasoning_content(payload, ProviderFormat.RESPONSES) == "KRT5 marks basal cells"


def test_reasoning_absent_is_none() -> None:
    chat = {"choices": [{"message": {"content": ">B cell<"}}]}

    assert extract_reasoning_content(chat, "openai") is None
    assert extract_reasoning_content(chat, ProviderFormat.CLAUDE) is None
    assert extract_reasoning_content(None, ProviderFormat.GEMINI) is None
