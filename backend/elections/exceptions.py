from __future__ import annotations

from .clock import LifecycleState


class ElectionError(Exception):
    """Base for rejections raised by the voting core.

    Every subclass is recoverable by the caller and carries a stable ``code`` the API
    layer exposes next to the human readable ``detail``.
    """

    code = "election_error"
    default_detail = "La operación electoral no pudo completarse."

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def as_payload(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class NotFound(ElectionError):
    code = "not_found"
    KIND_ELECTION = "election"
    KIND_CANDIDATE = "candidate"

    _details = {
        KIND_ELECTION: "No se encontró la elección.",
        KIND_CANDIDATE: "No se encontró la candidatura en esta elección.",
    }

    def __init__(self, kind: str, detail: str | None = None):
        self.kind = kind
        super().__init__(detail or self._details.get(kind, "No se encontró el recurso solicitado."))

    def as_payload(self) -> dict:
        return {**super().as_payload(), "kind": self.kind}


class NotOpen(ElectionError):
    code = "not_open"

    _details = {
        LifecycleState.INACTIVE: "La elección no está activa.",
        LifecycleState.UPCOMING: "La elección aún no ha comenzado.",
        LifecycleState.CLOSED: "La elección ya finalizó.",
    }

    def __init__(self, state: LifecycleState, detail: str | None = None):
        self.state = LifecycleState(state)
        super().__init__(detail or self._details.get(self.state, "La elección no está abierta."))

    def as_payload(self) -> dict:
        return {**super().as_payload(), "state": self.state.value}


class AlreadyVoted(ElectionError):
    code = "already_voted"
    default_detail = "Ya registraste tu voto en esta elección."


class Conflict(ElectionError):
    code = "conflict"
    default_detail = "La elección o candidatura ya tiene votos registrados."
