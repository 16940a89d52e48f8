"""
Assistant Agent (Intent Resolution)

DESIGN DECISION: The completion model is a TRANSLATOR, not an EXECUTOR.
It converts a chat message into an ordered list of CRUD actions plus a
friendly reply. It never touches data: actions go to the executor, which
validates every one of them.

CRITICAL BOUNDARIES:

1. The model:
   - CAN: interpret Portuguese/English commands, pick categories,
     resolve dates against the current moment it is given
   - CANNOT: write data, change subscription status
   - MUST: answer in the JSON contract
     {"actions": [...], "response": "..."}

2. This module:
   - finishes what the model leaves unresolved (relative dates, spoken
     times, missing categories) with deterministic heuristics
   - NEVER raises for configuration, network or parsing problems:
     the user always gets a reply, with no actions attached

The clock is injected so date handling is reproducible.
"""

import asyncio
import json
from datetime import date, datetime
from typing import Any, Callable, Optional
from uuid import UUID

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions

from odrna.agents.heuristics import (
    extract_time,
    infer_task_category,
    infer_transaction_category,
    infer_transaction_type,
    is_iso_date,
    resolve_relative_date,
)
from odrna.audit import AuditLogger
from odrna.config import GeminiSettings, get_settings
from odrna.models.actions import FallbackReason, IntentResolution
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import CollectionsSnapshot


logger = structlog.get_logger(__name__)


Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now().astimezone()


# =============================================================================
# USER-FACING FALLBACK REPLIES
# =============================================================================

FALLBACK_REPLIES = {
    FallbackReason.NOT_CONFIGURED: (
        "⚠️ A chave da API Gemini não está configurada.\n\n"
        "📝 Para configurar:\n"
        "1. Crie uma chave em https://aistudio.google.com/app/apikey\n"
        "2. Defina a variável de ambiente GEMINI_API_KEY\n"
        "3. Reinicie o aplicativo"
    ),
    FallbackReason.UNAUTHORIZED: (
        "🔑 A chave da API Gemini está incorreta ou inválida.\n\n"
        "📝 Para corrigir:\n"
        "1. Gere uma nova chave em https://aistudio.google.com/app/apikey\n"
        "2. Atualize a configuração GEMINI_API_KEY com a chave completa"
    ),
    FallbackReason.TIMEOUT: (
        "⏳ O assistente demorou demais para responder. "
        "Tente novamente em alguns instantes!"
    ),
    FallbackReason.UPSTREAM_ERROR: (
        "😔 Ops! Tive um problema ao processar seu comando.\n\n"
        "🌐 Verifique sua conexão com a internet e tente novamente em alguns instantes!"
    ),
    FallbackReason.MALFORMED_OUTPUT: (
        "❌ Desculpe, não consegui entender completamente. "
        "Pode reformular de outra forma?"
    ),
    FallbackReason.EMPTY_INPUT: (
        "Digite um comando ou uma pergunta para eu ajudar! 😊"
    ),
    FallbackReason.STORAGE_ERROR: (
        "💾 Não consegui ler seus dados salvos neste dispositivo, "
        "então não fiz nenhuma alteração.\n\n"
        "Restaure um backup ou tente novamente mais tarde."
    ),
}

WEEKDAY_NAMES = [
    "segunda-feira", "terça-feira", "quarta-feira", "quinta-feira",
    "sexta-feira", "sábado", "domingo",
]

_TYPE_LABELS = {"task": "tarefa", "event": "evento", "transaction": "transação"}
_VERB_LABELS = {
    "create": "Criar",
    "update": "Atualizar",
    "delete": "Remover",
    "list": "Listar",
}


# =============================================================================
# PROMPT
# =============================================================================

def build_system_prompt(snapshot: CollectionsSnapshot, now: datetime) -> str:
    """
    System instructions for one turn.

    The user's current collections are embedded so the model can refer
    to existing records by id (updates, deletes, questions).
    """
    context = snapshot.to_context()
    tasks_json = json.dumps(context["tasks"], ensure_ascii=False)
    events_json = json.dumps(context["events"], ensure_ascii=False)
    transactions_json = json.dumps(context["transactions"], ensure_ascii=False)
    weekday = WEEKDAY_NAMES[now.weekday()]

    return f"""Você é o assistente de produtividade do Odrna. Interprete o comando do usuário e converta-o em ações estruturadas sobre tarefas, eventos e transações.

MOMENTO ATUAL: {now.isoformat()} ({weekday})
Use este momento para calcular datas relativas (hoje, amanhã, próxima semana, sexta...). Datas devem ser ISO (AAAA-MM-DD) e horários HH:MM.

DADOS ATUAIS DO USUÁRIO:
- Tarefas: {tasks_json}
- Eventos: {events_json}
- Transações: {transactions_json}

AÇÕES DISPONÍVEIS:

1. TAREFAS (type: "task"):
   - create: {{"action": "create", "type": "task", "data": {{"title": string, "category": "trabalho" | "estudos" | "saude" | "pessoal", "priority"?: "low" | "medium" | "high", "dueDate"?: "AAAA-MM-DD", "description"?: string}}}}
   - update: {{"action": "update", "type": "task", "data": {{"id": string, "updates": {{"completed"?: boolean, "title"?: string, "category"?: string, "priority"?: string, "dueDate"?: string}}}}}}
   - delete: {{"action": "delete", "type": "task", "data": {{"id": string}}}}
   - list: {{"action": "list", "type": "task", "data": {{}}}}

2. EVENTOS (type: "event"):
   - create: {{"action": "create", "type": "event", "data": {{"title": string, "date": "AAAA-MM-DD", "time"?: "HH:MM", "category": "trabalho" | "estudos" | "saude" | "pessoal", "description"?: string}}}}
   - update: {{"action": "update", "type": "event", "data": {{"id": string, "updates": {{"title"?: string, "date"?: string, "time"?: string, "category"?: string}}}}}}
   - delete: {{"action": "delete", "type": "event", "data": {{"id": string}}}}
   - list: {{"action": "list", "type": "event", "data": {{}}}}

3. TRANSAÇÕES (type: "transaction"):
   - create: {{"action": "create", "type": "transaction", "data": {{"description": string, "amount": number (sempre positivo), "type": "income" | "expense", "category": "alimentacao" | "transporte" | "saude" | "lazer" | "salario" | "outros", "date"?: "AAAA-MM-DD"}}}}
   - update: {{"action": "update", "type": "transaction", "data": {{"id": string, "updates": {{"description"?: string, "amount"?: number, "type"?: string, "category"?: string}}}}}}
   - delete: {{"action": "delete", "type": "transaction", "data": {{"id": string}}}}
   - list: {{"action": "list", "type": "transaction", "data": {{}}}}

4. CONVERSA: cumprimentos, perguntas e pedidos de ajuda não geram ações. Retorne {{"actions": [], "response": "sua resposta"}}.

REGRAS:
- Seja conversacional e amigável; responda em português
- Um comando pode gerar várias ações ("Crie 2 tarefas: X e Y" = 2 ações create task)
- Para atualizar ou remover, use o id de um registro existente nos dados acima
- "estudar", "aula", "curso" => categoria "estudos"
- "médico", "academia", "exercício", "treino" => categoria "saude"
- "trabalho", "reunião", "cliente" => categoria "trabalho"
- Salário, pagamento recebido, "caiu" => transação income, categoria "salario"
- Mercado, restaurante, ifood => expense "alimentacao"; uber, gasolina, ônibus => expense "transporte"
- Horários específicos ("18h", "18hrs", "6 da tarde") indicam um EVENTO com data e hora
- O valor (amount) é sempre positivo; receita ou despesa é dada por "type"

EXEMPLOS:

Usuário: "Oi"
{{"actions": [], "response": "Olá! 👋 Posso criar tarefas, agendar eventos e registrar receitas e despesas. Como posso ajudar?"}}

Usuário: "Crie 2 tarefas: estudar inglês e fazer exercícios"
{{"actions": [{{"action": "create", "type": "task", "data": {{"title": "Estudar inglês", "category": "estudos"}}}}, {{"action": "create", "type": "task", "data": {{"title": "Fazer exercícios", "category": "saude"}}}}], "response": "✅ Pronto! Criei 2 tarefas:\\n• Estudar inglês (Estudos)\\n• Fazer exercícios (Saúde)"}}

Usuário: "Meu salário de R$ 1400 caiu"
{{"actions": [{{"action": "create", "type": "transaction", "data": {{"description": "Salário", "amount": 1400, "type": "income", "category": "salario"}}}}], "response": "💰 Registrei sua receita de R$ 1.400,00 (Salário)!"}}

Usuário: "Adicione uma despesa de R$ 50 no mercado"
{{"actions": [{{"action": "create", "type": "transaction", "data": {{"description": "Mercado", "amount": 50, "type": "expense", "category": "alimentacao"}}}}], "response": "💸 Registrei sua despesa de R$ 50,00 no mercado (Alimentação)."}}

Usuário: "Marque reunião amanhã às 14h"
{{"actions": [{{"action": "create", "type": "event", "data": {{"title": "Reunião", "date": "<data de amanhã>", "time": "14:00", "category": "trabalho"}}}}], "response": "📅 Reunião agendada para amanhã às 14:00!"}}

Responda APENAS com o JSON {{"actions": [...], "response": "..."}}."""


# =============================================================================
# OUTPUT PARSING AND COMPLETION
# =============================================================================

class MalformedOutputError(Exception):
    """The model's output is not the expected JSON object."""
    pass


def parse_model_output(text: Optional[str]) -> tuple[list[Any], str]:
    """
    Extract (actions, response) from raw model text.

    Tolerates markdown code fences and prose around the JSON object.

    Raises:
        MalformedOutputError: empty text, no JSON object, or wrong shape
    """
    if not text or not text.strip():
        raise MalformedOutputError("empty model output")

    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise MalformedOutputError("no JSON object in model output")

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedOutputError("model output is not a JSON object")

    actions = data.get("actions") or []
    if isinstance(actions, dict):
        actions = [actions]
    if not isinstance(actions, list):
        raise MalformedOutputError("'actions' is not a list")

    response = data.get("response")
    response = response.strip() if isinstance(response, str) else ""
    return actions, response


def _is_clock_time(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) == 5 and value.strip()[2] == ":"


def _complete_dates(fields: dict[str, Any], today: date, date_key: str) -> None:
    """Resolve a relative date under `date_key`; may also fill `time`."""
    raw = fields.get(date_key)
    if not isinstance(raw, str) or not raw.strip() or is_iso_date(raw):
        return
    resolved = resolve_relative_date(raw, today)
    if resolved is None:
        return
    fields[date_key] = resolved.isoformat()
    if date_key == "date" and not fields.get("time"):
        spoken_time = extract_time(raw)
        if spoken_time:
            fields["time"] = spoken_time


def _complete_time(fields: dict[str, Any]) -> None:
    raw = fields.get("time")
    if isinstance(raw, str) and raw.strip() and not _is_clock_time(raw):
        normalized = extract_time(raw)
        if normalized:
            fields["time"] = normalized


def complete_action(action: dict[str, Any], today: date) -> dict[str, Any]:
    """
    Fill in what the model left unresolved, without overriding it.

    Works on a copy. Unknown shapes are returned as-is for the executor
    to reject.
    """
    completed = dict(action)
    entity_type = str(completed.get("type", "")).strip().lower()
    verb = str(completed.get("action", "")).strip().lower()
    data = completed.get("data")
    if not isinstance(data, dict):
        return completed
    data = dict(data)
    completed["data"] = data

    if verb == "update" and isinstance(data.get("updates"), dict):
        updates = dict(data["updates"])
        data["updates"] = updates
        for key in ("date", "dueDate", "due_date"):
            _complete_dates(updates, today, key)
        _complete_time(updates)
        return completed

    if verb != "create":
        return completed

    if entity_type == "task":
        if not data.get("category"):
            data["category"] = infer_task_category(
                f"{data.get('title') or ''} {data.get('description') or ''}"
            ).value
        for key in ("dueDate", "due_date"):
            _complete_dates(data, today, key)
    elif entity_type == "event":
        if not data.get("category"):
            data["category"] = infer_task_category(
                f"{data.get('title') or ''} {data.get('description') or ''}"
            ).value
        _complete_dates(data, today, "date")
        _complete_time(data)
    elif entity_type == "transaction":
        description = data.get("description") or ""
        if not data.get("type"):
            data["type"] = infer_transaction_type(description).value
        if not data.get("category"):
            data["category"] = infer_transaction_category(description).value
        _complete_dates(data, today, "date")

    return completed


def describe_actions(actions: list[dict[str, Any]]) -> str:
    """Reply used when the model returns actions without a response."""
    if not actions:
        return "Certo! Como posso ajudar?"

    lines = []
    for action in actions:
        entity_type = str(action.get("type", "")).strip().lower()
        verb = str(action.get("action", "")).strip().lower()
        data = action.get("data") if isinstance(action.get("data"), dict) else {}
        label = data.get("title") or data.get("description") or data.get("id") or ""
        line = f"• {_VERB_LABELS.get(verb, verb)} {_TYPE_LABELS.get(entity_type, entity_type)}"
        lines.append(f"{line}: {label}" if label else line)
    return "✅ Pronto! Vou fazer o seguinte:\n" + "\n".join(lines)


class IntentResolver:
    """
    Turns one chat message into actions plus a reply.

    RESPONSIBILITIES:
    - Build the prompt from the user's current data and the current moment
    - Call the completion model with a bounded timeout
    - Parse and complete the returned actions

    BOUNDARIES:
    - NEVER mutates data
    - NEVER raises for expected failures (returns a fallback reply)
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            settings: Gemini settings (defaults to environment)
            model: Object with `generate_content_async(prompt)` returning a
                   response with `.text`. Built from settings when omitted.
            clock: Returns the current moment (defaults to local time)
        """
        self._settings = settings or get_settings().gemini
        self._model = model
        self._clock = clock or local_now
        self._audit = audit_logger or AuditLogger()

    @property
    def is_configured(self) -> bool:
        return self._model is not None or self._settings.is_configured

    def _get_model(self) -> Any:
        """Configure Google Generative AI on first use."""
        if self._model is None:
            genai.configure(api_key=self._settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=self._settings.model_name,
                generation_config={
                    "temperature": self._settings.temperature,
                    "max_output_tokens": self._settings.max_tokens,
                    "response_mime_type": "application/json",
                },
            )
        return self._model

    async def _fallback(
        self,
        reason: FallbackReason,
        correlation_id: Optional[UUID],
        error: Optional[str] = None,
    ) -> IntentResolution:
        await self._audit.log(AuditEventBuilder.intent_fallback(
            reason.value, error, correlation_id,
        ))
        return IntentResolution(
            actions=[],
            response=FALLBACK_REPLIES[reason],
            fallback_reason=reason,
        )

    @staticmethod
    def _classify_error(error: Exception) -> FallbackReason:
        if isinstance(error, asyncio.TimeoutError):
            return FallbackReason.TIMEOUT
        if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
            return FallbackReason.UNAUTHORIZED
        if isinstance(error, google_exceptions.InvalidArgument) and "api key" in str(error).lower():
            return FallbackReason.UNAUTHORIZED
        return FallbackReason.UPSTREAM_ERROR

    async def _complete(self, prompt: str) -> str:
        model = self._get_model()
        response = await asyncio.wait_for(
            model.generate_content_async(prompt),
            timeout=self._settings.request_timeout_seconds,
        )
        try:
            return response.text
        except ValueError as e:
            # Blocked or empty candidates have no text.
            raise MalformedOutputError(str(e))

    async def resolve(
        self,
        text: str,
        snapshot: Optional[CollectionsSnapshot] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IntentResolution:
        """
        Resolve a chat message into actions.

        Returns:
            IntentResolution with actions in execution order. On any
            configuration, upstream or parsing problem the actions are
            empty and `response` explains what happened.
        """
        message = (text or "").strip()
        await self._audit.log(AuditEventBuilder.intent_received(len(message), correlation_id))

        if not message:
            return await self._fallback(FallbackReason.EMPTY_INPUT, correlation_id)
        if not self.is_configured:
            return await self._fallback(FallbackReason.NOT_CONFIGURED, correlation_id)

        now = self._clock()
        prompt = (
            build_system_prompt(snapshot or CollectionsSnapshot(), now)
            + f"\n\nUsuário: \"{message}\""
        )

        try:
            raw_text = await self._complete(prompt)
        except MalformedOutputError as e:
            return await self._fallback(FallbackReason.MALFORMED_OUTPUT, correlation_id, str(e))
        except Exception as e:
            reason = self._classify_error(e)
            logger.warning("completion_failed", reason=reason.value, error=str(e) or type(e).__name__)
            await self._audit.log(AuditEventBuilder.external_service_error(
                "gemini", str(e) or type(e).__name__, correlation_id,
            ))
            return await self._fallback(reason, correlation_id, str(e) or type(e).__name__)

        try:
            raw_actions, reply = parse_model_output(raw_text)
        except MalformedOutputError as e:
            logger.warning("malformed_model_output", error=str(e))
            return await self._fallback(FallbackReason.MALFORMED_OUTPUT, correlation_id, str(e))

        today = now.date()
        actions = []
        for position, item in enumerate(raw_actions):
            if not isinstance(item, dict):
                logger.warning("non_object_action_dropped", position=position)
                continue
            actions.append(complete_action(item, today))

        if not reply:
            reply = describe_actions(actions)

        await self._audit.log(AuditEventBuilder.intent_resolved(
            len(actions),
            [f"{a.get('action')}:{a.get('type')}" for a in actions],
            correlation_id,
        ))
        return IntentResolution(actions=actions, response=reply)
