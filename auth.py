from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from schemas import CallerContext


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.caller_secret, salt="caller-context")


def issue_caller_token(owner_id: int, role: str = "user") -> str:
    serializer = _serializer()
    return serializer.dumps({"u": owner_id, "r": role})


def read_caller_token(token: str, max_age_hours: int = 12) -> CallerContext:
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except BadSignature as exc:
        raise ValueError("Invalid caller token") from exc
    if not isinstance(data, dict) or "u" not in data:
        raise ValueError("Invalid caller token")
    return CallerContext(owner_id=int(data["u"]), role=str(data.get("r") or "user"))
