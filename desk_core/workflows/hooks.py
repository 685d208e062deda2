# desk_core/workflows/hooks.py

"""
Hook collaborator.

Guard and entry hooks are referenced by opaque identifiers on states and
transitions. Identifiers are bound to callables once, at application
start (DeskCoreConfig.ready reads settings.DESK_WORKFLOW_HOOKS); the
runtime only ever talks to a HookInvoker.

Hook callables are called as fn(ticket, transition, context) and may
return:
  - None / True / HookOutcome.ALLOW      -> allow
  - False / HookOutcome.DENY             -> deny (guards only)
  - HookOutcome.RECOMPUTE_SLA            -> allow, ask for an SLA recompute
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Set

from django.db import connections
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class HookOutcome(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    RECOMPUTE_SLA = "recompute_sla"

    @classmethod
    def coerce(cls, value) -> "HookOutcome":
        if value is None or value is True:
            return cls.ALLOW
        if value is False:
            return cls.DENY
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class HookError(Exception):
    def __init__(self, hook_id: str, message: str):
        self.hook_id = hook_id
        super().__init__(message)


class UnknownHook(HookError):
    def __init__(self, hook_id: str):
        super().__init__(hook_id, f"No hook registered as '{hook_id}'.")


class HookTimeout(HookError):
    def __init__(self, hook_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(hook_id, f"Hook '{hook_id}' did not finish within {timeout}s.")


class HookInvoker:
    """
    Capability interface consumed by the runtime.
    """

    def invoke(self, hook_id: str, *, ticket, transition, context) -> HookOutcome:
        raise NotImplementedError


class HookRegistry(HookInvoker):
    """
    In-process hooks run inline, inside the caller's transaction. Hooks
    registered with remote=True run on a worker thread bounded by `timeout`
    and must not touch the database.
    """

    def __init__(self, hooks: Optional[Mapping[str, Callable]] = None, *, timeout: float = 0):
        self._hooks: Dict[str, Callable] = {}
        self._remote: Set[str] = set()
        self.timeout = float(timeout or 0)
        for hook_id, fn in (hooks or {}).items():
            self.register(hook_id, fn)

    def register(self, hook_id: str, fn: Callable, *, remote: bool = False) -> None:
        key = str(hook_id or "").strip()
        if not key:
            raise ValueError("Hook identifier must not be empty.")
        if not callable(fn):
            raise TypeError(f"Hook '{key}' is not callable.")
        self._hooks[key] = fn
        if remote:
            self._remote.add(key)
        else:
            self._remote.discard(key)

    def unregister(self, hook_id: str) -> None:
        key = str(hook_id or "").strip()
        self._hooks.pop(key, None)
        self._remote.discard(key)

    def __contains__(self, hook_id) -> bool:
        return str(hook_id or "").strip() in self._hooks

    def identifiers(self) -> Iterable[str]:
        return sorted(self._hooks)

    def is_remote(self, hook_id: str) -> bool:
        return str(hook_id or "").strip() in self._remote

    def invoke(self, hook_id: str, *, ticket, transition, context) -> HookOutcome:
        key = str(hook_id or "").strip()
        fn = self._hooks.get(key)
        if fn is None:
            raise UnknownHook(key)

        if key not in self._remote or not self.timeout:
            return HookOutcome.coerce(fn(ticket, transition, context))

        # shutdown(wait=False): a hung hook must not block the caller
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"hook-{key}")
        try:
            future = pool.submit(_run_detached, fn, ticket, transition, context)
            try:
                result = future.result(timeout=self.timeout)
            except FutureTimeout:
                raise HookTimeout(key, self.timeout) from None
        finally:
            pool.shutdown(wait=False)

        return HookOutcome.coerce(result)

    @classmethod
    def from_settings(cls, mapping: Mapping[str, Any], *, timeout: float = 0) -> "HookRegistry":
        """
        mapping: hook id -> callable, dotted import path, or
        {"path": <dotted path or callable>, "remote": bool}
        """
        registry = cls(timeout=timeout)
        for hook_id, target in (mapping or {}).items():
            remote = False
            if isinstance(target, Mapping):
                remote = bool(target.get("remote", False))
                target = target.get("path")
            fn = import_string(target) if isinstance(target, str) else target
            registry.register(hook_id, fn, remote=remote)
            logger.debug("workflow.hook.registered", extra={"hook_id": hook_id, "remote": remote})
        return registry


def _run_detached(fn: Callable, *args):
    try:
        return fn(*args)
    finally:
        # the worker thread's own connection, never the caller's
        connections.close_all()


# ===============================================================
# PROCESS-WIDE REGISTRY (bound at startup)
# ===============================================================

_registry: HookInvoker = HookRegistry()


def install_registry(invoker: HookInvoker) -> None:
    global _registry
    _registry = invoker


def get_hook_invoker() -> HookInvoker:
    return _registry
