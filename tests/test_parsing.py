"""
Tests for tool-call parsing, text heuristics and transcripts.
"""

from deckhand.orchestrator import checks
from deckhand.orchestrator.parsing import parse_tool_calls, strip_tool_blocks
from deckhand.orchestrator.prompts import build_prompt
from deckhand.orchestrator.transcript import Transcript, TurnKind, render_turn, trim_to_budget


class TestParseToolCalls:
    def test_fenced_block(self):
        """Should extract a call from a ```tool_call fence."""
        text = 'Saving now.\n```tool_call\n{"name": "create_vessel", "arguments": {"name": "Sea Breeze"}}\n```'
        result = parse_tool_calls(text)
        assert len(result.calls) == 1
        assert result.calls[0].name == "create_vessel"
        assert result.calls[0].arguments == {"name": "Sea Breeze"}
        assert result.content == "Saving now."
        assert result.attempted

    def test_tagged_block(self):
        text = '<tool_call>{"name": "update_profile", "arguments": {"full_name": "Ana"}}</tool_call>'
        result = parse_tool_calls(text)
        assert [c.name for c in result.calls] == ["update_profile"]
        assert result.content == ""

    def test_json_fence(self):
        text = '```json\n{"name": "generate_route", "arguments": {"name": "Trip"}}\n```'
        assert parse_tool_calls(text).calls[0].name == "generate_route"

    def test_multiple_calls_keep_order(self):
        text = (
            '```tool_call\n{"name": "fetch_reference_details", "arguments": {"make_model": "Hallberg-Rassy 34"}}\n```\n'
            '```tool_call\n{"name": "create_vessel", "arguments": {"name": "Vega"}}\n```'
        )
        assert [c.name for c in parse_tool_calls(text).calls] == ["fetch_reference_details", "create_vessel"]

    def test_string_arguments_are_decoded(self):
        text = '```tool_call\n{"name": "create_vessel", "arguments": "{\\"name\\": \\"Vega\\"}"}\n```'
        assert parse_tool_calls(text).calls[0].arguments == {"name": "Vega"}

    def test_malformed_json_is_attempted_but_not_called(self):
        """Should flag broken JSON as an attempt so the loop can ask again."""
        text = '```tool_call\n{"name": "create_vessel", "arguments": {"name": }\n```'
        result = parse_tool_calls(text)
        assert result.calls == []
        assert result.attempted
        assert "tool_call" not in result.content

    def test_placeholder_arguments_are_ignored(self):
        text = '```tool_call\n{"name": "create_vessel", "arguments": {"name": "...", "make_model": "..."}}\n```'
        result = parse_tool_calls(text)
        assert result.calls == []

    def test_plain_text(self):
        result = parse_tool_calls("What is your boat called?")
        assert result.calls == []
        assert not result.attempted
        assert result.content == "What is your boat called?"

    def test_none_input(self):
        assert parse_tool_calls(None).calls == []

    def test_strip_tool_blocks(self):
        text = 'Done.\n\n\n\n```tool_call\n{"name": "x", "arguments": {"a": 1}}\n```'
        assert strip_tool_blocks(text) == "Done."


class TestAffirmation:
    def test_exact_phrases(self):
        for msg in ("yes", "Confirm", "looks good!", "OK.", "go ahead"):
            assert checks.is_affirmation(msg), msg

    def test_short_sentence_with_affirmative_word(self):
        assert checks.is_affirmation("yes, that all looks good")

    def test_negated_or_unrelated(self):
        for msg in ("no", "not yet, change the name", "wait", "My boat is a Hunter 33", ""):
            assert not checks.is_affirmation(msg), msg

    def test_no_right_after_yes_still_confirms(self):
        """Should read "yes, no changes" as a confirmation."""
        for msg in ("yes, no changes", "ok no problem", "Yep, no edits needed."):
            assert checks.is_affirmation(msg), msg
        for msg in ("yes, no wait", "no, yes", "yes but not the name"):
            assert not checks.is_affirmation(msg), msg

    def test_long_message_is_not_a_confirmation(self):
        msg = "yes " + "and also I wanted to tell you about my plans for next summer " * 2
        assert not checks.is_affirmation(msg)


class TestSummaryDetection:
    def test_field_lines(self):
        text = "Here's your boat:\n- Name: Sea Breeze\n- Make/Model: Beneteau Oceanis 38\nShall I save it?"
        assert checks.looks_like_summary(text)

    def test_single_field_with_phrase(self):
        assert checks.looks_like_summary("Please confirm:\nName: Sea Breeze")

    def test_question_is_not_a_summary(self):
        assert not checks.looks_like_summary("What's the name of your boat?")

    def test_tool_call_text_is_not_a_summary(self):
        assert not checks.looks_like_summary("Name: A\nType: sloop\n```tool_call")


class TestClaims:
    def test_claim_detection(self):
        assert checks.claimed_operations("Your boat has been saved!") == {"create_vessel"}
        assert checks.claimed_operations("I've created your journey.") == {"generate_route"}
        assert checks.claimed_operations("Your profile is now updated.") == {"update_profile"}

    def test_no_claim(self):
        assert checks.claimed_operations("Shall I save your boat?") == set()
        assert checks.claimed_operations(None) == set()


class TestTranscript:
    def test_append_is_immutable(self):
        empty = Transcript()
        one = empty.append(TurnKind.USER, "hi")
        assert len(empty) == 0
        assert len(one) == 1

    def test_round_trip_through_storage(self):
        t = Transcript().append(TurnKind.USER, "hi").append(TurnKind.TOOL_RESULT, "ok", name="create_vessel")
        assert Transcript.from_list(t.to_list()) == t

    def test_last_before_index(self):
        t = (
            Transcript()
            .append(TurnKind.ASSISTANT, "first")
            .append(TurnKind.USER, "yes")
            .append(TurnKind.ASSISTANT, "second")
        )
        assert t.last(TurnKind.ASSISTANT).content == "second"
        assert t.last(TurnKind.ASSISTANT, before=2).content == "first"
        assert t.last(TurnKind.DIRECTIVE) is None

    def test_rendering(self):
        t = Transcript().append(TurnKind.TOOL_RESULT, "ok", name="create_vessel").append(TurnKind.DIRECTIVE, "go")
        assert render_turn(t.turns[0]) == "user: Tool results (create_vessel):\nok"
        assert render_turn(t.turns[1]) == "user: [SYSTEM: go]"

    def test_trim_drops_oldest_first(self):
        t = Transcript()
        for i in range(50):
            t = t.append(TurnKind.USER, f"message number {i} " + "x" * 200)
        kept, dropped = trim_to_budget(t, 300)
        assert dropped > 0
        assert kept[-1].content.startswith("message number 49")
        assert len(kept) + dropped == 50


class TestPrompt:
    def test_prompt_scopes_to_step(self):
        """Should list only the current step's operations and end on the assistant cue."""
        schemas = [{"name": "create_vessel", "description": "Save the boat", "parameters": {}}]
        prompt = build_prompt("owner", "boat_pending", schemas, Transcript().append(TurnKind.USER, "hi"), 12000)
        assert "## Current step" in prompt
        assert "create_vessel" in prompt
        assert "user: hi" in prompt
        assert prompt.endswith("assistant:")

    def test_prompt_without_operations(self):
        prompt = build_prompt("prospect", "signup_pending", [], Transcript(), 12000)
        assert "None in this step" in prompt
        assert "```tool_call" not in prompt
