from dataclasses import dataclass


class EmailSendError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
