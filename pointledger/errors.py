"""
Error taxonomy for the points platform.

- ValidationError: malformed or missing input, raised before any state change
- BusinessRuleViolation: a rule of the platform refused the action
- NotFoundError: a referenced account, game, task or record does not exist
- StateConflict: a status transition or settlement that should never happen
- ExternalDependencyError: a collaborator (gateway, code sender) failed

Every error carries the HTTP status the API layer responds with.
"""


class PlatformError(Exception):
    status_code = 400


class ValidationError(PlatformError):
    pass


class BusinessRuleViolation(PlatformError):
    pass


class InsufficientFundsError(BusinessRuleViolation):
    def __init__(self, available: int, required: int):
        super().__init__(f"Insufficient points: have {available}, need {required}")
        self.available = available
        self.required = required


class BelowMinimumDepositError(BusinessRuleViolation):
    pass


class BelowMinimumWithdrawError(BusinessRuleViolation):
    pass


class BetTooSmallError(BusinessRuleViolation):
    pass


class NoAttemptsLeftError(BusinessRuleViolation):
    pass


class DuplicatePhoneError(BusinessRuleViolation):
    status_code = 409


class InvalidCredentialsError(BusinessRuleViolation):
    status_code = 401


class AccountNotVerifiedError(BusinessRuleViolation):
    status_code = 403


class InvalidVerificationCodeError(BusinessRuleViolation):
    pass


class ForbiddenError(BusinessRuleViolation):
    status_code = 403


class NoEarningsAvailableError(BusinessRuleViolation):
    pass


class NotFoundError(PlatformError):
    status_code = 404


class AccountNotFoundError(NotFoundError):
    pass


class GameNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class DepositNotFoundError(NotFoundError):
    pass


class WithdrawalNotFoundError(NotFoundError):
    pass


class StateConflict(PlatformError):
    status_code = 500


class InvalidStateTransitionError(StateConflict):
    pass


class SettlementStateError(StateConflict):
    pass


class ExternalDependencyError(PlatformError):
    status_code = 502


class PaymentGatewayError(ExternalDependencyError):
    pass


class CodeDeliveryError(ExternalDependencyError):
    pass
