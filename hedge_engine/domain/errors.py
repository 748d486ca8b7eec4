
from typing import Any, Dict


class AppError(Exception):
    status_code = 400
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        if status_code:
            self.status_code = status_code
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message, "type": type(self).__name__}

# --- validation: bad enum / shape, never retried ---

class ValidationError(AppError):
    status_code = 400

class InvalidOptionType(ValidationError):
    pass

class UnknownTier(ValidationError):
    pass

class ScaleMismatch(ValidationError):
    pass

# --- fixed-point arithmetic: fatal for the current request ---

class FixedPointError(AppError):
    status_code = 422

class Overflow(FixedPointError):
    pass

class DivisionByZero(FixedPointError):
    pass

# --- business outcomes ---

class PremiumOutOfBounds(AppError):
    status_code = 422
    def __init__(self, min_premium: int, max_premium: int, submitted: int):
        super().__init__(
            f"premium {submitted} outside accepted range [{min_premium}, {max_premium}]"
        )
        self.min = min_premium
        self.max = max_premium
        self.submitted = submitted

    def payload(self) -> Dict[str, Any]:
        return {**super().payload(), "min": self.min, "max": self.max, "submitted": self.submitted}

class InsufficientLiquidity(AppError):
    status_code = 409

# --- collaborators (oracle / parameters / vault): retryable by the caller ---

class CollaboratorUnavailable(AppError):
    status_code = 503

class PriceUnavailable(CollaboratorUnavailable):
    pass

# --- lifecycle ---

class PolicyNotFound(AppError):
    status_code = 404

class InvalidTransition(AppError):
    status_code = 409

class SettlementNotDue(AppError):
    status_code = 409

class PolicyBusy(AppError):
    status_code = 409
