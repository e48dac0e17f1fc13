"""
Document AI processing state machine.

    none ──▶ pending ──▶ processing ──▶ completed
                ▲                  └──▶ failed
                │                          │
                └──── explicit reprocess ◀─┘ (also from completed)

  none        document never scheduled (not eligible / pre-upload)
  pending     upload completed; run queued
  processing  a pipeline run owns the document
  completed   run finished; ai_processed_at is set
  failed      run aborted; ai_error holds the cause

`completed` and `failed` are terminal for the pipeline itself. Only an
explicit reprocess request moves them back to `pending`.
"""

from __future__ import annotations

from enum import Enum

from docintel.core.errors import InvalidTransitionError


class ProcessingState(str, Enum):
    NONE       = "none"
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingState.COMPLETED, ProcessingState.FAILED)


class TransitionTrigger(str, Enum):
    """Who is asking for the state change."""
    UPLOAD    = "upload"      # upload completion hook
    PIPELINE  = "pipeline"    # the pipeline run itself
    REPROCESS = "reprocess"   # explicit operator / user request


# Exhaustive table: every state has an entry, every entry names the trigger
# allowed to perform it. A missing (state, target) pair is illegal.
TRANSITIONS: dict[ProcessingState, dict[ProcessingState, TransitionTrigger]] = {
    ProcessingState.NONE: {
        ProcessingState.PENDING: TransitionTrigger.UPLOAD,
    },
    ProcessingState.PENDING: {
        ProcessingState.PROCESSING: TransitionTrigger.PIPELINE,
    },
    ProcessingState.PROCESSING: {
        ProcessingState.COMPLETED: TransitionTrigger.PIPELINE,
        ProcessingState.FAILED:    TransitionTrigger.PIPELINE,
    },
    ProcessingState.COMPLETED: {
        ProcessingState.PENDING: TransitionTrigger.REPROCESS,
    },
    ProcessingState.FAILED: {
        ProcessingState.PENDING: TransitionTrigger.REPROCESS,
    },
}


def can_transition(
    current: ProcessingState,
    target:  ProcessingState,
    trigger: TransitionTrigger,
) -> bool:
    return TRANSITIONS[current].get(target) is trigger


def ensure_transition(
    current: ProcessingState,
    target:  ProcessingState,
    trigger: TransitionTrigger,
) -> ProcessingState:
    """Return `target` when the move is legal; raise InvalidTransitionError otherwise."""
    if not can_transition(current, target, trigger):
        raise InvalidTransitionError(current.value, target.value)
    return target


def sources_for(target: ProcessingState, trigger: TransitionTrigger) -> frozenset[ProcessingState]:
    """All states from which `trigger` may move a document to `target`."""
    return frozenset(
        state
        for state, moves in TRANSITIONS.items()
        if moves.get(target) is trigger
    )
