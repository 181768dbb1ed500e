from __future__ import annotations
import logging
from collections import deque
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .compiler import (
    ApiCallUnit,
    BranchTable,
    DeadBranchPolicy,
    FallThrough,
    Script,
    ScriptUnit,
    TERMINAL_KINDS,
)
from .config import get_settings

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    TRANSFER = "transfer"
    HANGUP = "hangup"
    QUEUE = "queue"
    VOICEMAIL = "voicemail"
    END = "end"  # a unit without successor finished
    INPUT_EXHAUSTED = "input_exhausted"
    STEP_LIMIT = "step_limit"


class SimulationStep(BaseModel):
    label: str
    name: str
    kind: str
    input: Optional[str] = None
    reprompt: bool = False


class SimulationResult(BaseModel):
    outcome: Outcome
    trace: List[SimulationStep] = Field(default_factory=list)
    terminal: Optional[str] = None  # label of the unit the call ended on
    remaining_inputs: List[str] = Field(default_factory=list)

    @property
    def path(self) -> List[str]:
        return [s.label for s in self.trace]


def simulate(
    script: Script,
    inputs: Iterable[str] = (),
    *,
    reprompt_limit: Optional[int] = None,
    max_steps: int = 200,
) -> SimulationResult:
    """Walk ``script`` as a caller would.

    Branch units consume one input each (a digit, a language code); api units
    with response branches consume one input as the response code, or use
    their mock response when inputs are exhausted.
    """
    limit = get_settings().reprompt_limit if reprompt_limit is None else reprompt_limit
    by_label: Dict[str, ScriptUnit] = {u.label: u for u in script.units}
    pending = deque(str(i) for i in inputs)
    failures: Dict[str, int] = {}
    trace: List[SimulationStep] = []

    def finish(outcome: Outcome, terminal: Optional[str] = None) -> SimulationResult:
        logger.debug("simulation ended with %s after %d step(s)", outcome.value, len(trace))
        return SimulationResult(
            outcome=outcome, trace=trace, terminal=terminal, remaining_inputs=list(pending)
        )

    current: Optional[str] = script.start
    for _ in range(max_steps):
        unit = by_label[current]

        if unit.kind in TERMINAL_KINDS:
            trace.append(SimulationStep(label=unit.label, name=unit.name, kind=unit.kind))
            return finish(Outcome(unit.kind), unit.label)

        if isinstance(unit, BranchTable):
            if not pending:
                trace.append(SimulationStep(label=unit.label, name=unit.name, kind=unit.kind))
                return finish(Outcome.INPUT_EXHAUSTED, unit.label)
            choice = pending.popleft()
            target = unit.branches.get(choice)
            if target is not None:
                trace.append(SimulationStep(label=unit.label, name=unit.name, kind=unit.kind, input=choice))
                current = target
                continue
            failures[unit.label] = failures.get(unit.label, 0) + 1
            retry = unit.fallback == DeadBranchPolicy.REPROMPT and failures[unit.label] < limit
            trace.append(SimulationStep(
                label=unit.label, name=unit.name, kind=unit.kind, input=choice, reprompt=retry,
            ))
            if retry:
                continue
            return finish(Outcome.HANGUP, unit.label)

        if isinstance(unit, ApiCallUnit) and unit.branches:
            code = pending.popleft() if pending else unit.mock_response
            trace.append(SimulationStep(label=unit.label, name=unit.name, kind=unit.kind, input=code))
            target = unit.branches.get(code) if code is not None else None
            if target is None:
                return finish(Outcome.END, unit.label)
            current = target
            continue

        trace.append(SimulationStep(label=unit.label, name=unit.name, kind=unit.kind))
        if not isinstance(unit, FallThrough) or unit.next is None:
            return finish(Outcome.END, unit.label)
        current = unit.next

    return finish(Outcome.STEP_LIMIT)
