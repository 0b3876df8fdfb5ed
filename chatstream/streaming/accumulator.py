"""
Per-message accumulation state machine.

`apply_event` is a pure step function folding one NormalizedEvent into an
AccumulatorState; `MessageAccumulator` drives it for a single in-flight AI
message and hands out the snapshots that persistence and the UI consume.
"""

from __future__ import annotations

from dataclasses import replace

from ..logging_utils import ContextualLogger
from .agents import FINAL_REPORT_AGENT, FINAL_REPORT_LABEL, agent_title
from .models import (
    AccumulatorState,
    MessageSnapshot,
    NormalizedEvent,
    TimelineEvent,
    TimelineKind,
    Transition,
)

SOURCES_TITLE = "Retrieved Sources"


def apply_event(  # noqa: PLR0912
    state: AccumulatorState, event: NormalizedEvent
) -> Transition:
    """
    Apply every rule that matches `event`, in order, and return the result.

    Rules are not exclusive: one envelope may carry a source map, an agent
    change, text and a final report at the same time.
    """
    timeline: list[TimelineEvent] = []
    republish = False
    agent_changed = False

    # --- 1. source counter --------------------------------------------------
    if event.source_count > state.source_count:
        state = replace(state, source_count=event.source_count)

    # --- 2. agent change ----------------------------------------------------
    if event.agent and event.agent != state.current_agent:
        # The report label is final once the composer has delivered
        label = FINAL_REPORT_LABEL if state.final_report else agent_title(event.agent)
        state = replace(state, current_agent=event.agent, agent_label=label)
        agent_changed = True
        republish = True

    # --- 3. function call ---------------------------------------------------
    if call := event.function_call:
        timeline.append(TimelineEvent(
            title=f"Function Call: {call.name}",
            kind=TimelineKind.FUNCTION_CALL,
            payload={"name": call.name, "args": call.args, "id": call.id},
        ))

    # --- 4. function response -----------------------------------------------
    if response := event.function_response:
        timeline.append(TimelineEvent(
            title=f"Function Response: {response.name}",
            kind=TimelineKind.FUNCTION_RESPONSE,
            payload={
                "name": response.name,
                "response": response.response,
                "id": response.id,
            },
        ))

    # --- 5. streamed text ---------------------------------------------------
    if event.text_parts and event.agent != FINAL_REPORT_AGENT:
        timeline.append(TimelineEvent(
            title=agent_title(event.agent),
            kind=TimelineKind.TEXT,
            payload={"content": " ".join(event.text_parts)},
        ))
        state = replace(
            state,
            accumulated_text=state.accumulated_text + "".join(event.text_parts),
        )
        republish = True

    # --- 6. images ----------------------------------------------------------
    if event.image_parts:
        state = replace(
            state,
            accumulated_images=state.accumulated_images + event.image_parts,
        )
        republish = True

    # --- 7. citation sources ------------------------------------------------
    if event.sources is not None:
        timeline.append(TimelineEvent(
            title=SOURCES_TITLE,
            kind=TimelineKind.SOURCES,
            payload={"content": event.sources},
        ))

    # --- 8. final report ----------------------------------------------------
    if event.agent == FINAL_REPORT_AGENT and event.final_report_with_citations:
        state = replace(
            state,
            final_content=event.final_report_with_citations,
            final_report=True,
            agent_label=FINAL_REPORT_LABEL,
        )
        republish = True

    return Transition(
        state=state,
        timeline=tuple(timeline),
        republish=republish,
        agent_changed=agent_changed,
    )


class MessageAccumulator:
    """
    Owns the accumulator state of one AI message for the lifetime of its
    stream. Events must be processed in arrival order; once finalized the
    accumulator rejects further events.
    """

    def __init__(self, message_id: str):
        self._state = AccumulatorState(message_id=message_id)
        self._finalized = False
        self.events_processed = 0
        self._logger = ContextualLogger({"message_id": message_id})

    @property
    def state(self) -> AccumulatorState:
        return self._state

    @property
    def finalized(self) -> bool:
        return self._finalized

    def process(self, event: NormalizedEvent) -> Transition:
        """Fold one event into the state and return the transition."""
        if self._finalized:
            raise RuntimeError(
                f"Accumulator for message {self._state.message_id} is finalized"
            )

        transition = apply_event(self._state, event)
        self._state = transition.state
        self.events_processed += 1

        if transition.agent_changed:
            self._logger.debug(
                "Agent changed",
                agent=self._state.current_agent,
                label=self._state.agent_label,
            )
        if event.agent == FINAL_REPORT_AGENT and event.final_report_with_citations:
            self._logger.info(
                "Final report received",
                length=len(event.final_report_with_citations),
            )
        return transition

    def finalize(self) -> MessageSnapshot:
        """Return the closing snapshot. Callable exactly once."""
        if self._finalized:
            raise RuntimeError(
                f"Accumulator for message {self._state.message_id} "
                "was already finalized"
            )
        self._finalized = True
        self._logger.info(
            "Message finalized",
            events=self.events_processed,
            content_length=len(self._state.content),
            images=len(self._state.accumulated_images),
            final_report=self._state.final_report,
        )
        return self._state.snapshot()
