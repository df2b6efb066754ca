from dataclasses import dataclass


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class AccessTokenData:
    user_id: int
    session_id: str
    is_admin: bool = False
