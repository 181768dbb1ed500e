"""Render a compiled Script as an Asterisk dialplan (the ``.agi`` export).

Every unit becomes a block of priorities in a single ``s`` extension, entered
through a priority label (``u0``, ``u1``, ...) in script order. A unit falls
through to the next block when its successor is emitted right after it, and
jumps with ``Goto`` otherwise.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional

from .compiler import (
    ApiCallUnit,
    BranchTable,
    CollectDigitUnit,
    DeadBranchPolicy,
    HangupUnit,
    LanguageUnit,
    MenuUnit,
    PlayUnit,
    QueueUnit,
    RecordUnit,
    Script,
    ScriptUnit,
    TransferUnit,
    VoicemailUnit,
)
from .config import get_settings

logger = logging.getLogger(__name__)

DIGIT_TIMEOUT = 5


def _arg(value: Optional[str]) -> str:
    if value is None:
        return ""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace("\r", " ")
        .replace("\n", " ")
    )


class _Writer:
    def __init__(self, script: Script, reprompt_limit: int):
        self.script = script
        self.reprompt_limit = reprompt_limit
        self.labels: Dict[str, str] = {u.label: f"u{i}" for i, u in enumerate(script.units)}
        self.lines: List[str] = []

    def op(self, app: str, label: Optional[str] = None) -> None:
        priority = f"n({label})" if label else "n"
        self.lines.append(f" same => {priority},{app}")

    def speak(self, message: Optional[str], audio_url: Optional[str], label: Optional[str] = None) -> None:
        if audio_url:
            self.op(f"Playback({_arg(audio_url)})", label)
        elif message:
            self.op(f"Festival({_arg(message)})", label)
        elif label:
            self.op("NoOp()", label)

    def goto(self, target: str) -> str:
        return f"Goto({self.labels[target]})"

    def cont(self, index: int, target: Optional[str]) -> None:
        if target is None:
            self.op("Hangup()")
            return
        following = self.script.units[index + 1].label if index + 1 < len(self.script.units) else None
        if target != following:
            self.op(self.goto(target))

    def branch_table(self, unit: BranchTable, var: str, audio_url: Optional[str], message: Optional[str]) -> None:
        label = self.labels[unit.label]
        self.op("Set(TRIES=0)", label)
        prompt = _arg(audio_url) if audio_url else ""
        digits = max((len(k) for k in unit.options), default=1)
        if message and not audio_url:
            self.op(f"Festival({_arg(message)})", f"{label}_ask")
            self.op(f"Read({var},,{digits},,,{DIGIT_TIMEOUT})")
        else:
            self.op(f"Read({var},{prompt},{digits},,,{DIGIT_TIMEOUT})", f"{label}_ask")
        for option, target in unit.branches.items():
            self.op(f'GotoIf($["${{{var}}}" = "{_arg(option)}"]?{self.labels[target]})')
        if unit.fallback == DeadBranchPolicy.REPROMPT:
            self.op("Set(TRIES=$[${TRIES} + 1])")
            self.op(f"GotoIf($[${{TRIES}} < {self.reprompt_limit}]?{label}_ask)")
        self.op("Hangup()")

    def unit(self, index: int, unit: ScriptUnit) -> None:
        label = self.labels[unit.label]
        self.lines.append(f"; {unit.name} ({unit.kind})")
        if isinstance(unit, PlayUnit):
            self.speak(unit.message, unit.audio_url, label)
            self.cont(index, unit.next)
        elif isinstance(unit, CollectDigitUnit):
            self.branch_table(unit, "DIGIT", unit.audio_url, unit.message)
        elif isinstance(unit, LanguageUnit):
            self.branch_table(unit, "LANGUAGE_CHOICE", None, unit.summary)
        elif isinstance(unit, ApiCallUnit):
            if unit.endpoint:
                self.op(f"AGI(http-request.agi,{_arg(unit.method or 'GET')},{_arg(unit.endpoint)})", label)
            else:
                self.op(f"Set(API_STATUS={_arg(unit.mock_response)})", label)
            for code, target in unit.branches.items():
                self.op(f'GotoIf($["${{API_STATUS}}" = "{_arg(code)}"]?{self.labels[target]})')
            self.cont(index, unit.next)
        elif isinstance(unit, RecordUnit):
            self.op(f"Record({label}-%d.wav,3,{unit.max_seconds or 60})", label)
            self.cont(index, unit.next)
        elif isinstance(unit, MenuUnit):
            self.speak(unit.summary, None, label)
            self.cont(index, unit.next)
        elif isinstance(unit, TransferUnit):
            self.op(f"Dial({_arg(unit.destination)})", label)
            self.op("Hangup()")
        elif isinstance(unit, QueueUnit):
            self.op(f"Queue({_arg(unit.queue)})", label)
            self.op("Hangup()")
        elif isinstance(unit, VoicemailUnit):
            self.op(f"VoiceMail({_arg(unit.mailbox)},u)", label)
            self.op("Hangup()")
        elif isinstance(unit, HangupUnit):
            self.op("Hangup()", label)


def render_agi(script: Script, *, context: Optional[str] = None, reprompt_limit: Optional[int] = None) -> str:
    settings = get_settings()
    context = context or settings.agi_context
    if reprompt_limit is None:
        reprompt_limit = settings.reprompt_limit

    w = _Writer(script, reprompt_limit)
    w.lines.extend([
        "; AGI Script",
        f"; Units: {len(script.units)}, Start: {script.start}",
        f"[{context}]",
        "exten => s,1,Answer()",
    ])
    for index, unit in enumerate(script.units):
        w.unit(index, unit)
    logger.debug("rendered %d dialplan line(s)", len(w.lines))
    return "\n".join(w.lines) + "\n"
