from __future__ import annotations

from http import HTTPStatus


class AortaError(Exception):
    """Base of the errors the router reports to callers.

    ``str(error)`` is the stable machine code, ``message`` the text shown to people.
    """

    code = "error"
    status = HTTPStatus.BAD_REQUEST
    message = "The request could not be processed."

    def __init__(self, detail: str | None = None):
        super().__init__(self.code)
        self.detail = detail

    @property
    def user_message(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


# authentication / authorization


class AccessDenied(AortaError, PermissionError):
    status = HTTPStatus.UNAUTHORIZED


class NoIdentity(AccessDenied):
    code = "no_identity"
    message = "Your user name is missing."


class NoSecret(AccessDenied):
    code = "no_secret"
    message = "Your authorization code is missing."


class BadCredential(AccessDenied):
    code = "bad_credential"
    message = "Your user name or authorization code is invalid."


class MissingRole(AccessDenied):
    code = "missing_role"
    status = HTTPStatus.FORBIDDEN
    message = "You are not authorized to do this."

    def __init__(self, role: str | None = None):
        super().__init__(None if role is None else f"requires the {role} role")
        self.role = role


# validation


class ValidationFailed(AortaError, ValueError):
    pass


class InvalidId(ValidationFailed):
    code = "invalid_id"
    message = "The identifier must consist of lower-case letters and digits only."


class InvalidRole(ValidationFailed):
    code = "invalid_role"
    message = "A role is not one of order, assign, test, manage, read."


class DuplicateId(ValidationFailed):
    code = "duplicate_id"
    status = HTTPStatus.CONFLICT
    message = "A resource with that identifier already exists."


class MissingField(ValidationFailed):
    code = "missing_field"
    message = "A required field is missing."


class MalformedBody(ValidationFailed):
    code = "malformed_body"
    message = "The submitted data are not a valid JSON object."


class MissingTester(ValidationFailed):
    code = "missing_tester"
    message = "The report does not name its tester."


class TesterMismatch(ValidationFailed):
    code = "tester_mismatch"
    message = "The tester of the report is not you."


class MissingId(ValidationFailed):
    code = "missing_id"
    message = "The report has no identifier."


class MissingPlaceholderValue(ValidationFailed):
    code = "missing_placeholder_value"
    message = "A template placeholder has no value."

    def __init__(self, name: str):
        super().__init__(f"__{name}__")
        self.name = name


# references


class UnknownReference(AortaError, LookupError):
    status = HTTPStatus.NOT_FOUND


class NotFound(UnknownReference):
    code = "not_found"
    message = "There is no such resource."


class UnknownOrder(UnknownReference):
    code = "unknown_order"
    message = "There is no such order. It may have been assigned already."


class UnknownJob(UnknownReference):
    code = "unknown_job"
    message = "There is no such job. It may have been completed already."


class UnknownTester(UnknownReference):
    code = "unknown_tester"
    message = "There is no such tester."


class TesterLacksRole(UnknownReference):
    code = "tester_lacks_role"
    status = HTTPStatus.BAD_REQUEST
    message = "The chosen user is not a tester."


class UnknownDigester(UnknownReference):
    code = "unknown_digester"
    message = "No digester exists for the script of this report."


class ExecutorNotConfigured(AortaError, RuntimeError):
    code = "executor_not_configured"
    status = HTTPStatus.NOT_IMPLEMENTED
    message = "This server cannot run jobs itself."
