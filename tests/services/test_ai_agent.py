from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

import pytest

from revision_api.domain.enums import Difficulty, ItemType
from revision_api.domain.schemas.revision import (
    EvidenceItem,
    NoteEvidence,
    RevisionNote,
    RevisionScope,
)
from revision_api.services.ai.agents import AgentConfiguration, RevisionNoteAgent
from revision_api.services.ai.clients import (
    GeminiClientError,
    GeminiMessage,
    GenerationConfig,
    JSONObject,
    JSONValue,
)
from revision_api.services.ai.prompts import REVISION_NOTE_SYSTEM_PROMPT
from tests.utils import sample_note

pytestmark = pytest.mark.asyncio

SCOPE = RevisionScope(domain="Cardiology", difficulty=Difficulty.CORE, cluster_key="heart-failure")


@dataclass(slots=True)
class RecordedCall:
    system_instruction: str
    messages: Sequence[GeminiMessage]
    response_schema: Mapping[str, JSONValue] | None
    generation_config: GenerationConfig | None
    model: str | None

    @property
    def text(self) -> str:
        return "\n".join(part.text for message in self.messages for part in message.parts)


class StubGenerativeClient:
    def __init__(self, responses: list[JSONObject | Exception]) -> None:
        self._responses = responses
        self.calls: list[RecordedCall] = []

    async def generate_json(
        self,
        *,
        system_instruction: str,
        messages: Sequence[GeminiMessage],
        response_schema: Mapping[str, JSONValue] | None = None,
        generation_config: GenerationConfig | None = None,
        model: str | None = None,
    ) -> Mapping[str, JSONValue]:
        self.calls.append(
            RecordedCall(
                system_instruction=system_instruction,
                messages=messages,
                response_schema=response_schema,
                generation_config=generation_config,
                model=model,
            )
        )
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        return None

    @property
    def default_model(self) -> str:
        return "models/gemini-stub"


def _agent(client: StubGenerativeClient, *, max_attempts: int = 3) -> RevisionNoteAgent:
    return RevisionNoteAgent(
        client=client,
        config=AgentConfiguration(
            default_model="models/gemini-stub",
            default_temperature=0.3,
            max_attempts=max_attempts,
        ),
    )


def _payload(title: str = "Heart failure essentials") -> JSONObject:
    return sample_note(title).model_dump(mode="json")


async def test_agent_returns_validated_note_with_scope_and_evidence() -> None:
    client = StubGenerativeClient([_payload()])
    evidence = NoteEvidence(
        case_items=[
            EvidenceItem(
                item_type=ItemType.CASE,
                attempt_id=3,
                item_id=1,
                score=35,
                title="Breathless at night",
                detail="Orthopnoea  and\nankle oedema",
            )
        ],
        exam_items=[EvidenceItem(item_type=ItemType.EXAM_QUESTION, item_id=9, score=100)],
        average_score=68,
        total_attempts=2,
    )

    note = await _agent(client).generate(SCOPE, evidence=evidence)

    assert note == sample_note()
    [call] = client.calls
    assert call.system_instruction == REVISION_NOTE_SYSTEM_PROMPT
    assert call.model == "models/gemini-stub"
    assert call.response_schema == RevisionNote.model_json_schema()
    assert call.generation_config is not None
    assert call.generation_config.as_payload()["temperature"] == 0.3
    assert "Domain: Cardiology." in call.text
    assert "Difficulty: Core." in call.text
    assert "Topic cluster: heart-failure." in call.text
    assert "2 recent attempt(s), average score 68/100." in call.text
    assert "- Case (score 35, weak): Breathless at night Orthopnoea and ankle oedema" in call.text
    assert "- Exam question (score 100, solid)" in call.text


async def test_agent_describes_missing_evidence_and_open_scope() -> None:
    client = StubGenerativeClient([_payload()])

    await _agent(client).generate(RevisionScope(domain="Renal"))

    text = client.calls[0].text
    assert "Difficulty: any." in text
    assert "Topic cluster: general domain review." in text
    assert "no recent attempts recorded" in text


async def test_agent_retries_when_response_invalid() -> None:
    invalid = _payload()
    invalid["key_concepts"] = ["Only one concept"]
    client = StubGenerativeClient([invalid, _payload("Second attempt note")])

    note = await _agent(client).generate(SCOPE)

    assert note.title == "Second attempt note"
    assert len(client.calls) == 2
    assert "Previous feedback" not in client.calls[0].text
    assert "Previous feedback" in client.calls[1].text


async def test_agent_retries_after_client_error() -> None:
    client = StubGenerativeClient([GeminiClientError("finishReason=MAX_TOKENS"), _payload()])

    note = await _agent(client).generate(SCOPE)

    assert note == sample_note()
    assert "MAX_TOKENS" in client.calls[1].text


async def test_agent_raises_last_error_when_attempts_exhausted() -> None:
    client = StubGenerativeClient(
        [GeminiClientError("first"), GeminiClientError("second")]
    )

    with pytest.raises(GeminiClientError, match="second"):
        await _agent(client, max_attempts=2).generate(SCOPE)

    assert len(client.calls) == 2
