"""
Tests for proposal synthesis: parsing, fingerprinting and action refs.
"""

import asyncio
import json

import pytest

from decision_runtime.config import ModelConfig
from decision_runtime.decisions import (
    ContextAssembler,
    DecisionType,
    ModelReply,
    ProposalSynthesizer,
    action_ref_for,
    build_prompt,
    generate_decision_id,
    parse_model_output,
    proposal_fingerprint,
)
from decision_runtime.errors import (
    ErrorCode,
    ErrorKind,
    PermanentError,
    SchemaViolation,
    TransientError,
)

from tests._decision_testkit import ACCOUNT, TENANT, ScriptedModelClient, make_action, make_body


def _fixed_id(account_id: str) -> str:
    return f"decision-{account_id}-1700000000000-abcdef012"


async def _context(read_models):
    assembler = ContextAssembler(read_models, read_models, read_models, graph_provider=read_models)
    return await assembler.assemble_context(TENANT, ACCOUNT, trace_id="trace-1")


class _SlowModelClient:
    async def complete(self, prompt, system):
        await asyncio.sleep(1)
        return ModelReply(text="{}")


class TestParseModelOutput:
    """Test JSON extraction from model replies."""

    def test_raw_json(self):
        assert parse_model_output('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = "Here you go:\n```json\n{\"a\": 1}\n```\nThanks"

        assert parse_model_output(text) == {"a": 1}

    def test_fenced_without_language(self):
        assert parse_model_output("```\n{\"a\": 2}\n```") == {"a": 2}

    def test_prose_fails(self):
        with pytest.raises(SchemaViolation) as exc_info:
            parse_model_output("I think you should call them.")

        assert exc_info.value.code == ErrorCode.UNPARSEABLE_OUTPUT

    def test_array_fails(self):
        with pytest.raises(SchemaViolation) as exc_info:
            parse_model_output("[1, 2]")

        assert exc_info.value.code == ErrorCode.UNPARSEABLE_OUTPUT


class TestFingerprint:
    """Test order-independent proposal fingerprints."""

    def test_ordering_does_not_change_fingerprint(self):
        a = make_action("CREATE_INTERNAL_NOTE", why=["one", "two"])
        b = make_action("FLAG_FOR_REVIEW")
        first = make_body([a, b], decision_reason_codes=["X", "Y"])
        second = make_body(
            [b, dict(a, why=["two", "one"])],
            decision_reason_codes=["Y", "X"],
        )

        assert proposal_fingerprint(first) == proposal_fingerprint(second)

    def test_rank_and_ref_excluded(self):
        plain = make_body([make_action()])
        ranked = make_body([make_action(proposed_rank=3, action_ref="action_ref_x")])

        assert proposal_fingerprint(plain) == proposal_fingerprint(ranked)

    def test_content_change_changes_fingerprint(self):
        assert proposal_fingerprint(make_body()) != proposal_fingerprint(make_body(summary="Different"))


class TestIdentifiers:
    def test_decision_id_format(self):
        decision_id = generate_decision_id("acct-9")

        _, millis, suffix = decision_id.rsplit("-", 2)
        assert decision_id.startswith("decision-acct-9-")
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_action_ref_is_deterministic(self):
        action = make_action()

        ref = action_ref_for("decision-1", action)

        assert ref == action_ref_for("decision-1", dict(action))
        assert ref.startswith("action_ref_")
        assert len(ref) == len("action_ref_") + 16
        assert ref != action_ref_for("decision-2", action)


class TestBuildPrompt:
    @pytest.mark.asyncio
    async def test_prompt_mentions_account_and_signals(self, read_models):
        context = await _context(read_models)

        prompt = build_prompt(context)

        assert f"Account ID: {ACCOUNT}" in prompt
        assert "RENEWAL_WINDOW_ENTERED" in prompt
        assert "Min confidence threshold: 0.7" in prompt


class TestProposalSynthesizer:
    """Test the synthesis cycle against scripted model replies."""

    @pytest.mark.asyncio
    async def test_synthesizes_proposal(self, read_models):
        client = ScriptedModelClient(make_body([
            make_action("FLAG_FOR_REVIEW"),
            make_action("CREATE_INTERNAL_NOTE"),
        ]))
        synthesizer = ProposalSynthesizer(client, id_factory=_fixed_id)

        proposal = await synthesizer.synthesize(await _context(read_models), evaluation_id="eval_1")

        assert proposal.decision_id == _fixed_id(ACCOUNT)
        assert proposal.decision_type == DecisionType.PROPOSE_ACTIONS
        assert proposal.trace_id == "trace-1"
        assert proposal.evaluation_id == "eval_1"
        assert [a.action_type for a in proposal.actions] == ["CREATE_INTERNAL_NOTE", "FLAG_FOR_REVIEW"]
        assert all(a.action_ref.startswith("action_ref_") for a in proposal.actions)
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_action_refs_ignore_emission_order(self, read_models):
        actions = [
            make_action("FLAG_FOR_REVIEW", entity_id="acct-1"),
            make_action("CREATE_INTERNAL_TASK", entity_id="contact-7", entity_type="CONTACT"),
            make_action("CREATE_INTERNAL_NOTE", entity_id="acct-1"),
        ]
        context = await _context(read_models)

        def refs(proposal):
            return {
                (a.action_type, a.target.entity_type, a.target.entity_id): a.action_ref
                for a in proposal.actions
            }

        forward = await ProposalSynthesizer(
            ScriptedModelClient(make_body(actions)), id_factory=_fixed_id
        ).synthesize(context)
        backward = await ProposalSynthesizer(
            ScriptedModelClient(make_body(list(reversed(actions)))), id_factory=_fixed_id
        ).synthesize(context)

        assert len(refs(forward)) == 3
        assert refs(forward) == refs(backward)
        assert [a.action_ref for a in forward.actions] == [a.action_ref for a in backward.actions]

    @pytest.mark.asyncio
    async def test_fenced_reply_accepted(self, read_models):
        text = "```json\n" + json.dumps(make_body()) + "\n```"
        synthesizer = ProposalSynthesizer(ScriptedModelClient(ModelReply(text=text)))

        proposal = await synthesizer.synthesize(await _context(read_models))

        assert len(proposal.actions) == 1

    @pytest.mark.asyncio
    async def test_same_body_same_fingerprint(self, read_models):
        synthesizer = ProposalSynthesizer(ScriptedModelClient(make_body()))
        context = await _context(read_models)

        first = await synthesizer.synthesize(context)
        second = await synthesizer.synthesize(context)

        assert first.decision_id != second.decision_id
        assert first.proposal_fingerprint == second.proposal_fingerprint

    @pytest.mark.asyncio
    async def test_invalid_body_fails_closed(self, read_models):
        synthesizer = ProposalSynthesizer(ScriptedModelClient(make_body([make_action(confidence=2)])))

        with pytest.raises(SchemaViolation) as exc_info:
            await synthesizer.synthesize(await _context(read_models))

        assert exc_info.value.context.account_id == ACCOUNT

    @pytest.mark.asyncio
    async def test_duplicate_actions_rejected(self, read_models):
        synthesizer = ProposalSynthesizer(ScriptedModelClient(make_body([make_action(), make_action()])))

        with pytest.raises(SchemaViolation) as exc_info:
            await synthesizer.synthesize(await _context(read_models))

        assert exc_info.value.code == ErrorCode.INVARIANT_VIOLATION

    @pytest.mark.asyncio
    async def test_rate_limited_reply_is_transient(self, read_models):
        reply = ModelReply(status=429, error="slow down", error_kind=ErrorKind.RATE_LIMIT)
        synthesizer = ProposalSynthesizer(ScriptedModelClient(reply))

        with pytest.raises(TransientError) as exc_info:
            await synthesizer.synthesize(await _context(read_models))

        assert exc_info.value.retryable is True
        assert exc_info.value.code == ErrorCode.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_unstructured_auth_failure_is_permanent(self, read_models):
        reply = ModelReply(status=401, error="Unauthorized: invalid api key")
        synthesizer = ProposalSynthesizer(ScriptedModelClient(reply))

        with pytest.raises(PermanentError) as exc_info:
            await synthesizer.synthesize(await _context(read_models))

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, read_models):
        synthesizer = ProposalSynthesizer(_SlowModelClient(), config=ModelConfig(timeout_seconds=0.01))

        with pytest.raises(TransientError) as exc_info:
            await synthesizer.synthesize(await _context(read_models))

        assert exc_info.value.code == ErrorCode.TIMEOUT
