"""
Tests for the HTTP completion client and fix-plan drafting.
"""

import json

import httpx
import pytest

from schema_sentinel.enums import SafetyRating, Severity
from schema_sentinel.llm import (
    CompletionError,
    HttpCompletionClient,
    draft_fix_plan,
    fix_plan_from_payload,
    select_top_issues,
)

from fakes import FakeCompletionClient, make_issue


def make_client(handler, api_key="sk-test"):
    return HttpCompletionClient(
        base_url="https://llm.example.com/v1/",
        api_key=api_key,
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestHttpCompletionClient:
    """Tests for HttpCompletionClient.complete_json()."""

    def test_posts_chat_completion(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return completion('{"ok": true}')

        with make_client(handler) as client:
            assert client.complete_json("system", "prompt") == {"ok": True}

        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

    def test_missing_key(self):
        client = make_client(lambda request: completion("{}"), api_key=None)
        with pytest.raises(CompletionError) as exc_info:
            client.complete_json("s", "p")
        assert exc_info.value.code == "NOT_CONFIGURED"

    @pytest.mark.parametrize(
        "response,code",
        [
            (httpx.Response(500, json={}), "HTTP_ERROR"),
            (httpx.Response(200, text="not json"), "MALFORMED_RESPONSE"),
            (httpx.Response(200, json={"choices": []}), "MALFORMED_RESPONSE"),
            (completion(""), "EMPTY_RESPONSE"),
            (completion("[1, 2]"), "MALFORMED_RESPONSE"),
            (completion("{broken"), "MALFORMED_RESPONSE"),
        ],
    )
    def test_failures_become_completion_errors(self, response, code):
        client = make_client(lambda request: response)
        with pytest.raises(CompletionError) as exc_info:
            client.complete_json("s", "p")
        assert exc_info.value.code == code

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CompletionError) as exc_info:
            make_client(handler).complete_json("s", "p")
        assert exc_info.value.code == "REQUEST_FAILED"


class TestFixPlanDrafting:
    """Tests for draft_fix_plan() and payload parsing."""

    def test_payload_parsing(self):
        plan = fix_plan_from_payload(
            {
                "canonicalRule": "Use companies",
                "migrations": [
                    {"description": "a", "sql": "ALTER TABLE a;", "safetyRating": "safe"},
                    {"description": "no sql"},
                    "garbage",
                ],
                "backfills": [{"description": "b", "sql": "UPDATE b;", "safetyRating": "YOLO"}],
                "verificationQueries": ["SELECT 1", ""],
                "appCodeChanges": "not a list",
            }
        )
        assert plan.canonical_rule == "Use companies"
        assert [(f.description, f.safety_rating) for f in plan.migrations] == [
            ("a", SafetyRating.SAFE)
        ]
        assert plan.backfills[0].safety_rating == SafetyRating.RISKY
        assert plan.verification_queries == ["SELECT 1"]
        assert plan.app_code_changes == []

    def test_no_issues_skips_collaborator(self):
        client = FakeCompletionClient()
        assert draft_fix_plan([], client).is_empty
        assert client.calls == []

    def test_collaborator_failure_yields_empty_plan(self):
        client = FakeCompletionClient(error=CompletionError("HTTP_ERROR", "down"))
        assert draft_fix_plan([make_issue()], client).is_empty

    def test_prompt_carries_issue_summary(self):
        client = FakeCompletionClient(
            {"integrity expert": {"migrations": [{"description": "m", "sql": "ALTER TABLE x;"}]}}
        )
        plan = draft_fix_plan([make_issue(row_count=3)], client)

        assert [f.description for f in plan.migrations] == ["m"]
        (_, prompt), = client.calls
        assert "Orphan rows detected in orders.customer_id" in prompt
        assert "Affects 3 rows" in prompt

    def test_top_issues_by_severity_then_confidence(self):
        low = make_issue(title="low", severity=Severity.LOW, confidence=1.0)
        high_weak = make_issue(title="high weak", severity=Severity.HIGH, confidence=0.5)
        high_strong = make_issue(title="high strong", severity=Severity.HIGH, confidence=0.9)
        top = select_top_issues([low, high_weak, high_strong], max_count=2)
        assert [i.title for i in top] == ["high strong", "high weak"]
