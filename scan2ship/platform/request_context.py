from contextvars import ContextVar
from typing import Optional

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_tenant_id_ctx: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)


def set_request_id(request_id: str):
    return _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def set_tenant_id(tenant_id: Optional[str]):
    return _tenant_id_ctx.set(tenant_id)


def get_tenant_id() -> Optional[str]:
    return _tenant_id_ctx.get()
