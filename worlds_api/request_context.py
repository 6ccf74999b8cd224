"""Context vars for request-scoped data (e.g. request_id) so the access guard can tag its logs."""
from contextvars import ContextVar

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
