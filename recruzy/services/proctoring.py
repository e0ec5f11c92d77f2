# recruzy/services/proctoring.py
"""
Монитор прокторинга для одной сессии прохождения теста.

Состояния: clean -> warned -> violated. Монитор ничего не сохраняет:
его жизнь ограничена одним соединением, а для аудита важны только
счетчики, отправленные вместе с результатом.
"""

from typing import Callable, Dict, Optional

# --- Виды нарушений ---
TAB_SWITCH = "tab_switch"
NO_FACE = "no_face"
MULTIPLE_FACES = "multiple_faces"
FACE_CHANGED = "face_changed"
VIOLATION_KINDS = (TAB_SWITCH, NO_FACE, MULTIPLE_FACES, FACE_CHANGED)
# Нарушения, серия которых обрывается, когда лицо снова видно в кадре
RECOVERABLE_KINDS = (NO_FACE, MULTIPLE_FACES)

# --- Сколько предупреждений допускается до автоматической отправки ---
# Вкладки: одно предупреждение, отправка на втором переключении
MAX_TAB_SWITCH_WARNINGS = 1
# Лицо: два предупреждения, отправка на третьем нарушении
MAX_FACE_VIOLATION_WARNINGS = 2

# --- Состояния ---
STATE_CLEAN = "clean"
STATE_WARNED = "warned"
STATE_VIOLATED = "violated"

# --- Что делать клиенту после события ---
ACTION_WARN = "warn"
ACTION_AUTO_SUBMIT = "auto_submit"
ACTION_IGNORED = "ignored"
ACTION_RESET = "reset"

# Имена счетчиков в теле отправки результата
COUNTER_NAMES = {
    TAB_SWITCH: "tabSwitches",
    NO_FACE: "noFace",
    MULTIPLE_FACES: "multipleFaces",
    FACE_CHANGED: "faceChanged",
}


def default_allowances(
    tab_switch_warnings: int = MAX_TAB_SWITCH_WARNINGS,
    face_warnings: int = MAX_FACE_VIOLATION_WARNINGS,
) -> Dict[str, int]:
    return {
        TAB_SWITCH: tab_switch_warnings,
        NO_FACE: face_warnings,
        MULTIPLE_FACES: face_warnings,
        FACE_CHANGED: face_warnings,
    }


class ProctoringMonitor:
    """
    Counts violations per kind and fires ``on_auto_submit`` exactly once,
    when a kind goes past its warning allowance.

    ``counts`` are cumulative and go out with the result. ``streaks`` decide
    the auto-submit: for face kinds a recovery clears the streak, so only
    consecutive violations without the face coming back add up.
    """

    def __init__(
        self,
        on_auto_submit: Callable[[Dict[str, int], str], None],
        allowances: Optional[Dict[str, int]] = None,
    ):
        self.on_auto_submit = on_auto_submit
        self.allowances = default_allowances()
        if allowances:
            self.allowances.update(allowances)
        self.counts = {kind: 0 for kind in VIOLATION_KINDS}
        self.streaks = {kind: 0 for kind in VIOLATION_KINDS}
        self.state = STATE_CLEAN
        self.triggered_by = None

    def record_violation(self, kind: str) -> str:
        if kind not in VIOLATION_KINDS:
            raise ValueError(f"Unknown violation kind: {kind}")

        # Тест уже отправлен
        if self.state == STATE_VIOLATED:
            return ACTION_IGNORED

        self.counts[kind] += 1
        self.streaks[kind] += 1
        if self.streaks[kind] > self.allowances[kind]:
            self.state = STATE_VIOLATED
            self.triggered_by = kind
            self.on_auto_submit(self.counters(), kind)
            return ACTION_AUTO_SUBMIT

        self.state = STATE_WARNED
        return ACTION_WARN

    def record_recovery(self, kind: str) -> str:
        """Лицо снова в кадре: серия нарушений этого вида сбрасывается."""
        if kind not in RECOVERABLE_KINDS:
            raise ValueError(f"Violation kind cannot be recovered: {kind}")

        if self.state == STATE_VIOLATED or self.streaks[kind] == 0:
            return ACTION_IGNORED

        self.streaks[kind] = 0
        if not any(self.streaks.values()):
            self.state = STATE_CLEAN
        return ACTION_RESET

    def warnings_left(self, kind: str) -> int:
        return max(self.allowances[kind] - self.streaks[kind], 0)

    def counters(self) -> Dict[str, int]:
        """Counters in the shape the submission payload expects."""
        return {COUNTER_NAMES[kind]: self.counts[kind] for kind in VIOLATION_KINDS}
