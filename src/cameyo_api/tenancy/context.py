from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from .identifiers import PUBLIC_TENANT


T = TypeVar("T")

tenant_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("tenant_id", default=None)


def current_tenant_id(default: str = PUBLIC_TENANT) -> str:
    return tenant_id_ctx_var.get() or default


def get_tenant_id_or_none() -> str | None:
    return tenant_id_ctx_var.get()


@contextmanager
def use_tenant(tenant_id: str) -> Iterator[str]:
    """Bind ``tenant_id`` for the dynamic extent of the ``with`` block.

    Tasks spawned inside the block copy the current context, so they keep
    observing this tenant even after the block exits.
    """
    token = tenant_id_ctx_var.set(tenant_id)
    try:
        yield tenant_id
    finally:
        tenant_id_ctx_var.reset(token)


def run_in_tenant(tenant_id: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    ctx = contextvars.copy_context()

    def _call() -> T:
        tenant_id_ctx_var.set(tenant_id)
        return fn(*args, **kwargs)

    return ctx.run(_call)
