"""Review run state machine using the transitions library.

Every ReviewRun moves through a fixed pipeline:

    created -> diff_fetched -> segmented -> analyzing -> aggregated
            -> scored -> reported -> feedback_published -> done

An empty diff short-circuits diff_fetched -> done. `fail` moves any
non-terminal state to failed.

Usage:
    from reviewflow.workflow.fsm import ReviewRunFSM

    fsm = ReviewRunFSM(run)
    fsm.fetch_diff()
    fsm.segment()
"""

import logging
from typing import Callable

from transitions import Machine

from reviewflow.lib.types import ReviewRun

logger = logging.getLogger(__name__)


STATES = [
    "created",
    "diff_fetched",
    "segmented",
    "analyzing",
    "aggregated",
    "scored",
    "reported",
    "feedback_published",
    "done",
    "failed",
]

TERMINAL_STATES = {"done", "failed"}

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    {"trigger": "fetch_diff", "source": "created", "dest": "diff_fetched"},
    {"trigger": "finish_empty", "source": "diff_fetched", "dest": "done"},
    {"trigger": "segment", "source": "diff_fetched", "dest": "segmented"},
    {"trigger": "start_analysis", "source": "segmented", "dest": "analyzing"},
    {"trigger": "aggregate", "source": "analyzing", "dest": "aggregated"},
    {"trigger": "score", "source": "aggregated", "dest": "scored"},
    {"trigger": "report", "source": "scored", "dest": "reported"},
    {"trigger": "publish_feedback", "source": "reported", "dest": "feedback_published"},
    {"trigger": "finish", "source": "feedback_published", "dest": "done"},

    # Any in-flight state can fail
    {"trigger": "fail", "source": [s for s in STATES if s not in TERMINAL_STATES], "dest": "failed"},
]


class ReviewRunFSM:
    """State machine for one review run.

    Mirrors every transition into run.state and run.state_history and logs it.
    """

    def __init__(self, run: ReviewRun, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            run: The run whose state this machine owns
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        self.run = run
        self.on_transition = on_transition

        initial = run.state if run.state in STATES else "created"
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.run.run_id}: {from_state} -> {to_state} ({trigger})")

        self.run.state = to_state
        self.run.state_history.append((from_state, to_state, trigger))

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
