"""
Tests for the Intent Resolver.

The completion model is always a FakeModel; these tests cover prompt
construction, output parsing, deterministic completion of actions and
every fallback path.
"""

import pytest
from datetime import date

from google.api_core import exceptions as google_exceptions

from odrna.agents import (
    FALLBACK_REPLIES,
    IntentResolver,
    MalformedOutputError,
    build_system_prompt,
    complete_action,
    parse_model_output,
)
from odrna.config import GeminiSettings
from odrna.models.actions import FallbackReason
from odrna.models.entities import CollectionsSnapshot, Task

from tests.conftest import FIXED_NOW, FakeModel


def make_resolver(model, gemini_settings, clock, audit_logger):
    return IntentResolver(gemini_settings, model=model, clock=clock, audit_logger=audit_logger)


class TestScenarios:
    """End-to-end resolver scenarios with a fake model."""

    async def test_two_tasks_get_categories(self, gemini_settings, clock, audit_logger):
        """Test 'Crie 2 tarefas' yields two create/task actions with inferred categories."""
        model = FakeModel.replying(
            [
                {"action": "create", "type": "task", "data": {"title": "Estudar inglês"}},
                {"action": "create", "type": "task", "data": {"title": "Fazer exercícios"}},
            ],
            "✅ Pronto! Criei 2 tarefas.",
        )
        resolver = make_resolver(model, gemini_settings, clock, audit_logger)

        resolution = await resolver.resolve("Crie 2 tarefas: estudar inglês e fazer exercícios")

        assert not resolution.is_fallback
        assert [(a["action"], a["type"]) for a in resolution.actions] == [
            ("create", "task"), ("create", "task"),
        ]
        assert [a["data"]["category"] for a in resolution.actions] == ["estudos", "saude"]
        assert resolution.response

    async def test_model_categories_are_kept(self, gemini_settings, clock, audit_logger):
        """Test inference never overrides what the model chose."""
        model = FakeModel.replying([
            {"action": "create", "type": "task", "data": {"title": "Estudar", "category": "trabalho"}},
        ])
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("x")
        assert resolution.actions[0]["data"]["category"] == "trabalho"

    async def test_salary_transaction(self, gemini_settings, clock, audit_logger):
        """Test 'Meu salário de R$ 1400 caiu' yields one income transaction."""
        model = FakeModel.replying(
            [{"action": "create", "type": "transaction", "data": {"description": "Salário", "amount": 1400}}],
            "💰 Registrei sua receita!",
        )
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve(
            "Meu salário de R$ 1400 caiu"
        )

        assert len(resolution.actions) == 1
        data = resolution.actions[0]["data"]
        assert data["amount"] == 1400
        assert data["type"] == "income"
        assert data["category"] == "salario"

    async def test_relative_date_and_spoken_time(self, gemini_settings, clock, audit_logger):
        """Test 'amanhã às 18h' is resolved against the injected clock."""
        model = FakeModel.replying([
            {"action": "create", "type": "event", "data": {"title": "Reunião", "date": "amanhã", "time": "18h"}},
        ])
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve(
            "Marque reunião amanhã às 18h"
        )

        data = resolution.actions[0]["data"]
        assert data["date"] == "2024-01-16"
        assert data["time"] == "18:00"
        assert data["category"] == "trabalho"

    async def test_weekday_due_date(self, gemini_settings, clock, audit_logger):
        """Test a weekday name becomes the next such date."""
        model = FakeModel.replying([
            {"action": "create", "type": "task", "data": {"title": "Entregar relatório", "dueDate": "sexta"}},
        ])
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("x")
        assert resolution.actions[0]["data"]["dueDate"] == "2024-01-19"

    async def test_conversation_has_no_actions(self, gemini_settings, clock, audit_logger):
        """Test a greeting returns only a reply."""
        model = FakeModel.replying([], "Olá! 👋")
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("Oi")
        assert resolution.actions == []
        assert resolution.response == "Olá! 👋"

    async def test_non_object_actions_dropped(self, gemini_settings, clock, audit_logger):
        """Test junk entries in the actions list are removed."""
        model = FakeModel.replying(["criar tarefa", {"action": "list", "type": "task", "data": {}}])
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("x")
        assert resolution.actions == [{"action": "list", "type": "task", "data": {}}]

    async def test_missing_reply_is_generated(self, gemini_settings, clock, audit_logger):
        """Test an empty response is replaced with a summary of the actions."""
        model = FakeModel.replying(
            [{"action": "create", "type": "task", "data": {"title": "Ler livro"}}], "",
        )
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("x")
        assert "Ler livro" in resolution.response

    async def test_prompt_contains_context(self, gemini_settings, clock, audit_logger):
        """Test the prompt embeds the user's data and the current moment."""
        model = FakeModel.replying([])
        snapshot = CollectionsSnapshot(tasks=[Task(title="Pagar aluguel")])

        await make_resolver(model, gemini_settings, clock, audit_logger).resolve("Oi", snapshot)

        prompt = model.prompts[0]
        assert "Pagar aluguel" in prompt
        assert FIXED_NOW.isoformat() in prompt
        assert "segunda-feira" in prompt
        assert 'Usuário: "Oi"' in prompt


class TestFallbacks:
    """Tests for the never-raise fallback paths."""

    async def test_not_configured(self, clock, audit_logger):
        """Test a missing API key returns a configuration hint and no actions."""
        resolver = IntentResolver(GeminiSettings(api_key=None), clock=clock, audit_logger=audit_logger)

        resolution = await resolver.resolve("Crie uma tarefa")

        assert resolution.actions == []
        assert resolution.fallback_reason == FallbackReason.NOT_CONFIGURED
        assert "configurada" in resolution.response
        assert "GEMINI_API_KEY" in resolution.response

    def test_blank_key_is_not_configured(self):
        """Test a whitespace key counts as missing."""
        assert not IntentResolver(GeminiSettings(api_key="   ")).is_configured

    async def test_empty_input(self, gemini_settings, clock, audit_logger):
        """Test blank text is answered without calling the model."""
        model = FakeModel.replying([])
        resolution = await make_resolver(model, gemini_settings, clock, audit_logger).resolve("   ")
        assert resolution.fallback_reason == FallbackReason.EMPTY_INPUT
        assert model.prompts == []

    async def test_timeout(self, clock, audit_logger):
        """Test a slow model is cut off."""
        settings = GeminiSettings(api_key="k", request_timeout_seconds=0.05)
        model = FakeModel(text='{"actions": [], "response": "tarde demais"}', delay=1)

        resolution = await make_resolver(model, settings, clock, audit_logger).resolve("Oi")

        assert resolution.fallback_reason == FallbackReason.TIMEOUT
        assert resolution.actions == []
        assert resolution.response == FALLBACK_REPLIES[FallbackReason.TIMEOUT]

    @pytest.mark.parametrize("error", [
        google_exceptions.PermissionDenied("API key not valid"),
        google_exceptions.Unauthenticated("bad credentials"),
        google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key."),
    ])
    async def test_unauthorized(self, error, gemini_settings, clock, audit_logger):
        """Test credential errors explain how to fix the key."""
        resolution = await make_resolver(
            FakeModel(error=error), gemini_settings, clock, audit_logger,
        ).resolve("Oi")
        assert resolution.fallback_reason == FallbackReason.UNAUTHORIZED
        assert "GEMINI_API_KEY" in resolution.response

    async def test_upstream_error(self, gemini_settings, clock, audit_logger):
        """Test any other failure is a generic upstream reply."""
        resolution = await make_resolver(
            FakeModel(error=google_exceptions.ServiceUnavailable("down")),
            gemini_settings, clock, audit_logger,
        ).resolve("Oi")
        assert resolution.fallback_reason == FallbackReason.UPSTREAM_ERROR

    async def test_network_error(self, gemini_settings, clock, audit_logger):
        """Test plain connection errors never escape."""
        resolution = await make_resolver(
            FakeModel(error=OSError("connection reset")), gemini_settings, clock, audit_logger,
        ).resolve("Oi")
        assert resolution.fallback_reason == FallbackReason.UPSTREAM_ERROR

    @pytest.mark.parametrize("text", ["", "desculpe, não sei", "[1, 2]", '{"actions": "x"}'])
    async def test_malformed_output(self, text, gemini_settings, clock, audit_logger):
        """Test unusable model output becomes a rephrase request."""
        resolution = await make_resolver(
            FakeModel(text=text), gemini_settings, clock, audit_logger,
        ).resolve("Oi")
        assert resolution.fallback_reason == FallbackReason.MALFORMED_OUTPUT
        assert resolution.actions == []


class TestParseModelOutput:
    """Tests for raw output parsing."""

    def test_code_fence(self):
        """Test a fenced JSON block is accepted."""
        actions, response = parse_model_output(
            '```json\n{"actions": [], "response": "ok"}\n```'
        )
        assert actions == []
        assert response == "ok"

    def test_single_action_object(self):
        """Test a lone action object is wrapped in a list."""
        actions, _ = parse_model_output('{"actions": {"action": "list", "type": "task"}, "response": "ok"}')
        assert actions == [{"action": "list", "type": "task"}]

    def test_missing_actions(self):
        """Test a reply-only object means no actions."""
        assert parse_model_output('{"response": "Olá"}') == ([], "Olá")

    def test_invalid_json(self):
        """Test broken JSON raises."""
        with pytest.raises(MalformedOutputError):
            parse_model_output('{"actions": [}')


class TestCompleteAction:
    """Tests for deterministic action completion."""

    TODAY = date(2024, 1, 15)

    def test_iso_dates_untouched(self):
        """Test dates the model already resolved are kept."""
        action = {"action": "create", "type": "event", "data": {"title": "x", "date": "2024-05-01"}}
        assert complete_action(action, self.TODAY)["data"]["date"] == "2024-05-01"

    def test_unknown_expression_untouched(self):
        """Test unrecognized dates are left for the executor to reject."""
        action = {"action": "create", "type": "event", "data": {"title": "x", "date": "algum dia"}}
        assert complete_action(action, self.TODAY)["data"]["date"] == "algum dia"

    def test_time_taken_from_date_phrase(self):
        """Test 'amanhã 6 da tarde' in the date field fills the time."""
        action = {"action": "create", "type": "event", "data": {"title": "x", "date": "amanhã 6 da tarde"}}
        data = complete_action(action, self.TODAY)["data"]
        assert data["date"] == "2024-01-16"
        assert data["time"] == "18:00"

    def test_update_dates(self):
        """Test relative dates inside updates are resolved."""
        action = {"action": "update", "type": "task", "data": {"id": "1", "updates": {"dueDate": "amanhã"}}}
        assert complete_action(action, self.TODAY)["data"]["updates"]["dueDate"] == "2024-01-16"

    def test_expense_inference(self):
        """Test a missing type defaults to expense with a category."""
        action = {"action": "create", "type": "transaction", "data": {"description": "Uber", "amount": 25}}
        data = complete_action(action, self.TODAY)["data"]
        assert data["type"] == "expense"
        assert data["category"] == "transporte"

    def test_original_not_mutated(self):
        """Test completion works on a copy."""
        action = {"action": "create", "type": "task", "data": {"title": "Estudar"}}
        complete_action(action, self.TODAY)
        assert "category" not in action["data"]


class TestPrompt:
    """Tests for the system prompt."""

    def test_prompt_lists_vocabulary(self):
        """Test every entity type and verb is described."""
        prompt = build_system_prompt(CollectionsSnapshot(), FIXED_NOW)
        for word in ('"task"', '"event"', '"transaction"', "create", "update", "delete", "list"):
            assert word in prompt
        assert "2024-01-15" in prompt
