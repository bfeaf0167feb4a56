# agents/narrative_agent.py
"""NarrativeAgent: asks Gemini for per-stop durations, notes and an order.

The orchestrator only depends on the ``NarrativeProvider`` protocol; this
module supplies the default implementation backed by
``langchain_google_genai``. Whatever the model returns is parsed leniently
into a ``NarrativeItinerary``; anything unusable raises
``NarrativeUnavailableError``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

import config
from prompts import load_prompt
from workflows.schemas import NarrativeItinerary, NarrativeStop

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", flags=re.DOTALL)
_EMBEDDED_OBJECT = re.compile(r"\{[\s\S]*\}")


class NarrativeUnavailableError(Exception):
    """The narrative backend failed, timed out or answered with unusable data."""


class NarrativeProvider(Protocol):
    async def generate_itinerary(
        self,
        stops: Sequence[str],
        city: str,
        session_id: Optional[str] = None,
    ) -> NarrativeItinerary:
        ...


# ============================================================================
# Parsing
# ============================================================================

def parse_narrative_json(text: str) -> Optional[Dict[str, Any]]:
    """Extract the first JSON object from a model answer."""
    if not text:
        return None
    candidates: List[str] = [chunk for chunk in _FENCED_JSON.findall(text)]
    candidates.append(text)
    embedded = _EMBEDDED_OBJECT.search(text)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def narrative_from_payload(payload: Dict[str, Any]) -> NarrativeItinerary:
    entries = payload.get("schedule") or payload.get("stops") or []
    if not isinstance(entries, list):
        entries = []

    stops: List[NarrativeStop] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        label = _text(entry.get("spot") or entry.get("label") or entry.get("name"))
        if not label:
            continue
        stops.append(
            NarrativeStop(
                label=label,
                duration=_text(entry.get("duration")),
                notes=_text(entry.get("notes")),
            )
        )

    return NarrativeItinerary(
        title=_text(payload.get("title")) or NarrativeItinerary.model_fields["title"].default,
        total_duration=_text(payload.get("totalDuration") or payload.get("total_duration")),
        stops=tuple(stops),
    )


# ============================================================================
# Agent
# ============================================================================

class NarrativeAgent:
    """Default ``NarrativeProvider`` backed by a Gemini chat model."""

    def __init__(
        self,
        *,
        model_name: Optional[str] = None,
        temperature: Optional[float] = None,
        llm: Optional[Any] = None,
    ) -> None:
        self.model_name = model_name or config.DEFAULT_MODEL_NAME
        self.temperature = config.DEFAULT_TEMPERATURE if temperature is None else temperature
        self._llm = llm
        self._llm_disabled = False
        self._llm_error: Optional[str] = None
        self._system_prompt = load_prompt("narrative")

    async def generate_itinerary(
        self,
        stops: Sequence[str],
        city: str,
        session_id: Optional[str] = None,
    ) -> NarrativeItinerary:
        model = self._ensure_llm()
        if model is None:
            raise NarrativeUnavailableError(self._llm_error or "Narrative model is not configured")

        system_msg = SystemMessage(content=self._system_prompt.format(city=city))
        user_msg = HumanMessage(content=self._render_stops(stops, city))
        run_config = {"metadata": {"session_id": session_id}} if session_id else None

        logger.info(f"Requesting narrative for {len(stops)} stops in {city}")
        try:
            response = await model.ainvoke([system_msg, user_msg], config=run_config)
        except Exception as exc:
            self._llm_error = str(exc)
            raise NarrativeUnavailableError(f"Narrative request failed: {exc}") from exc

        content = getattr(response, "content", "")
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )

        parsed = parse_narrative_json(str(content))
        if parsed is None:
            self._llm_error = "Narrative response was not valid JSON."
            raise NarrativeUnavailableError(self._llm_error)

        narrative = narrative_from_payload(parsed)
        if not narrative.stops:
            self._llm_error = "Narrative response contained no stops."
            raise NarrativeUnavailableError(self._llm_error)

        self._llm_error = None
        return narrative

    @staticmethod
    def _render_stops(stops: Sequence[str], city: str) -> str:
        lines = [f"City: {city}", "Stops:"]
        lines.extend(f"{index}. {stop}" for index, stop in enumerate(stops, 1))
        return "\n".join(lines)

    def _ensure_llm(self) -> Optional[Any]:
        if self._llm_disabled:
            return None
        if self._llm is None:
            try:
                self._llm = ChatGoogleGenerativeAI(
                    model=self.model_name,
                    temperature=self.temperature,
                    google_api_key=config.get_google_api_key(),
                )
            except Exception as exc:
                logger.warning(f"Narrative model unavailable: {exc}")
                self._llm_error = str(exc)
                self._llm_disabled = True
                return None
        return self._llm


__all__ = [
    "NarrativeAgent",
    "NarrativeProvider",
    "NarrativeUnavailableError",
    "narrative_from_payload",
    "parse_narrative_json",
]
