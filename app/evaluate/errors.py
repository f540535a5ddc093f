class EvaluateError(Exception):
    pass


class AttemptNotFoundError(EvaluateError):
    pass


class InvalidSelectionCriteriaError(EvaluateError):
    pass


class NoViableContextError(EvaluateError):
    pass


class GeneratedItemInvalidError(EvaluateError):
    pass


class AssignmentUnavailableError(EvaluateError):
    pass


class ExternalServiceError(EvaluateError):
    pass
