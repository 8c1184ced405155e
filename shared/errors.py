import re


class TournamentError(Exception):
    """Base for every failure surfaced at the request boundary."""

    status_code = 400

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return re.sub(r'(?<!^)(?=[A-Z])', '_', self.__class__.__name__).lower()

    def to_dict(self) -> dict:
        return {'error': self.message, 'code': self.code}


class ValidationError(TournamentError):
    status_code = 400


class NotFound(TournamentError):
    status_code = 404

    def __init__(self, kind: str, identifier=None):
        self.kind = kind
        self.identifier = identifier
        suffix = f" {identifier}" if identifier is not None else ""
        super().__init__(f"{kind}{suffix} not found")


class InvalidTransition(TournamentError):
    status_code = 409

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(reason or f"Cannot transition from {from_state} to {to_state}")


class NotInRegistrationPhase(TournamentError):
    status_code = 409


class DeadlinePassed(TournamentError):
    status_code = 400


class NotEligible(TournamentError):
    status_code = 403


class DuplicateRegistration(TournamentError):
    status_code = 409


class TournamentBusy(TournamentError):
    status_code = 423
