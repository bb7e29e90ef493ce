import time
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

MAX_USER_ID_LENGTH = 64


@dataclass(frozen=True)
class IdentityContext:
    """The acting user. Every store call is scoped by ``user_id``."""

    user_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValueError("Identity requires a non-empty user id")
        if len(self.user_id) > MAX_USER_ID_LENGTH:
            raise ValueError(
                f"User id longer than {MAX_USER_ID_LENGTH} characters"
            )


class IdentityRejected(Exception):
    pass


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="ledger-identity")


def issue_identity_token(user_id: str) -> str:
    """Sign a token for ``user_id``; used by the authentication gate and tests."""
    serializer = _serializer()
    return serializer.dumps({"u": user_id, "ts": int(time.time())})


def resolve_identity(
    token: Optional[str], max_age_secs: Optional[int] = None
) -> IdentityContext:
    if not token:
        raise IdentityRejected("Missing identity token")
    if max_age_secs is None:
        max_age_secs = get_settings().identity_max_age_secs
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_secs)
    except BadSignature as exc:
        raise IdentityRejected("Invalid identity token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    try:
        return IdentityContext(user_id=user_id)
    except ValueError as exc:
        raise IdentityRejected("Invalid identity token") from exc
