"""
Classify failures for user-facing messages. Only used to pick wording; callers
still log and re-raise or convert to 500.
"""
from sqlalchemy.exc import DBAPIError, OperationalError
from app.services.mailer import MailDeliveryError

_DB_TEXT_SIGNALS = (
    "could not connect",
    "connection refused",
    "server closed the connection",
    "timeout expired",
    "timed out",
    "name or service not known",
    "could not translate host name",
)


def summarize_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


def is_db_connectivity_error(error: BaseException) -> bool:
    if isinstance(error, OperationalError):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    text = str(error).lower()
    return any(signal in text for signal in _DB_TEXT_SIGNALS)


def is_mail_delivery_error(error: BaseException) -> bool:
    return isinstance(error, MailDeliveryError)
