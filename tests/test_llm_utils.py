from scp_rerank.llm_utils import (
    build_anthropic_payload,
    build_chat_payload,
    build_messages,
    parse_retry_after,
    safe_json_loads,
)


def test_build_messages_from_string():
    assert build_messages("Hello") == [{"role": "user", "content": "Hello"}]


def test_build_messages_skips_empty_parts():
    assert build_messages(["Hello", "", "World"]) == [
        {"role": "user", "content": "Hello"},
        {"role": "user", "content": "World"},
    ]


def test_build_chat_payload_json_response_format():
    payload = build_chat_payload("gpt-4o-mini", "Hi", max_tokens=123)
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["max_tokens"] == 123
    assert payload["temperature"] == 0.0


def test_build_chat_payload_plain():
    payload = build_chat_payload("gpt-4o-mini", "Hi", max_tokens=0, json_mode=False)
    assert "response_format" not in payload
    assert "max_tokens" not in payload


def test_build_anthropic_payload_always_has_max_tokens():
    assert build_anthropic_payload("claude", "Hi", max_tokens=0)["max_tokens"] == 1


def test_parse_retry_after():
    assert parse_retry_after(None) is None
    assert parse_retry_after("  ") is None
    assert parse_retry_after("2.5") == 2.5
    assert parse_retry_after("-4") == 0.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert parse_retry_after("soon") is None


def test_safe_json_loads():
    assert safe_json_loads('{"a": 1}') == {"a": 1}
    assert safe_json_loads('```json\n{"a": 1}\n```') == {"a": 1}
    assert safe_json_loads('Sure! {"a": {"b": "}"}} done') == {"a": {"b": "}"}}
    assert safe_json_loads("[1]") is None
    assert safe_json_loads("") is None


def test_safe_json_loads_skips_braces_that_do_not_decode():
    assert safe_json_loads('{not json} then {"ok": true}') == {"ok": True}
    assert safe_json_loads("```\nno object here\n```") is None
