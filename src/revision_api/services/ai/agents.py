"""Gemini driven generation of personalised revision notes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable

from pydantic import ValidationError

from revision_api.domain.enums import ItemType
from revision_api.domain.schemas.revision import (
    EvidenceItem,
    NoteEvidence,
    RevisionNote,
    RevisionScope,
)
from revision_api.services.ai.clients import (
    GeminiClientError,
    GeminiMessage,
    GeminiTextPart,
    GenerationConfig,
    GenerativeClient,
)
from revision_api.services.ai.prompts import REVISION_NOTE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

EVIDENCE_DETAIL_CHARS = 400


@dataclass(frozen=True, slots=True)
class AgentConfiguration:
    """Static defaults applied to each agent invocation."""

    default_model: str
    default_temperature: float
    max_attempts: int = 3
    max_output_tokens: int = 4000


class RevisionNoteAgent:
    """Builds a revision note for one scope, retrying with feedback on bad output."""

    def __init__(
        self,
        *,
        client: GenerativeClient,
        config: AgentConfiguration,
    ) -> None:
        self._client = client
        self._config = config

    @property
    def client(self) -> GenerativeClient:
        return self._client

    async def generate(
        self, scope: RevisionScope, *, evidence: NoteEvidence | None = None
    ) -> RevisionNote:
        """Ask Gemini for a note and validate it, feeding errors back on retry."""
        schema = RevisionNote.model_json_schema()
        schema_json = json.dumps(schema, indent=2, sort_keys=True)
        evidence_block = self._render_evidence(evidence)
        feedback: str | None = None
        last_error: Exception | None = None

        logger.info(
            "Dispatching revision note generation",
            extra={
                "scope_key": scope.scope_key,
                "evidence_items": len(evidence.items) if evidence else 0,
                "model": self._config.default_model,
            },
        )

        for attempt in range(1, self._config.max_attempts + 1):
            instructions = self._render_instruction_block(scope, feedback)
            parts = [
                GeminiTextPart(
                    f"{instructions}\n\nReturn a JSON document that matches the following "
                    f"schema:\n```json\n{schema_json}\n```"
                ),
                GeminiTextPart(evidence_block),
            ]
            try:
                payload = await self._client.generate_json(
                    system_instruction=REVISION_NOTE_SYSTEM_PROMPT,
                    messages=[GeminiMessage(role="user", parts=parts)],
                    response_schema=schema,
                    generation_config=GenerationConfig(
                        temperature=self._config.default_temperature,
                        top_p=0.9,
                        max_output_tokens=self._config.max_output_tokens,
                    ),
                    model=self._config.default_model,
                )
                note = RevisionNote.model_validate(payload)
            except (GeminiClientError, ValidationError) as exc:
                last_error = exc
                feedback = (
                    "The previous response could not be processed. "
                    f"Error: {exc}. Return valid JSON that matches the schema and its length bounds."
                )
                logger.warning(
                    "Gemini revision note invalid",
                    extra={"attempt": attempt, "scope_key": scope.scope_key, "reason": str(exc)},
                )
                continue

            logger.info(
                "Revision note generation completed",
                extra={"scope_key": scope.scope_key, "attempts": attempt},
            )
            return note

        if last_error is not None:
            raise last_error
        raise GeminiClientError("Gemini was not asked for a revision note (max_attempts < 1).")

    @staticmethod
    def _render_instruction_block(scope: RevisionScope, feedback: str | None) -> str:
        lines = [
            "Write a personalised revision note for the following topic.",
            f"Domain: {scope.domain}.",
            f"Difficulty: {scope.difficulty.value if scope.difficulty else 'any'}.",
            f"Topic cluster: {scope.cluster_key or 'general domain review'}.",
            "High-yield content only, plain text, exam-oriented language.",
        ]
        if feedback:
            lines.append(f"Previous feedback: {feedback}")
        return "\n".join(lines)

    @classmethod
    def _render_evidence(cls, evidence: NoteEvidence | None) -> str:
        if evidence is None or not evidence.items:
            return "Learner evidence: no recent attempts recorded in this topic."
        lines = [
            f"Learner evidence: {evidence.total_attempts} recent attempt(s), "
            f"average score {evidence.average_score}/100."
        ]
        lines.extend(cls._render_items(evidence.items))
        return "\n".join(lines)

    @staticmethod
    def _render_items(items: Iterable[EvidenceItem]) -> Iterable[str]:
        for item in items:
            label = "Case" if item.item_type is ItemType.CASE else "Exam question"
            outcome = "weak" if item.is_weak else "solid"
            detail = " ".join(f"{item.title} {item.detail}".split())[:EVIDENCE_DETAIL_CHARS]
            yield f"- {label} (score {item.score}, {outcome}): {detail}"


__all__ = ["AgentConfiguration", "RevisionNoteAgent"]
