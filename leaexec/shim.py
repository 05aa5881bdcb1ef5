"""
Host-import shims.

The launcher does not implement any host function by itself: it asks a shim
for the set of HostModules which satisfy the imports of the module, and for a
callback which must be invoked once the instance exists, so that the host
functions can call back into its exports and memory.

Third-party shims are selected with `--shim package.module:attr`, where attr
is either an object implementing the Shim protocol or a zero-argument
callable returning one.
"""

import importlib
from typing import Any, Callable, Protocol

from leaexec.errors import LauncherError
from leaexec.llwasm import HostModule, LLWasmInstance

BindInstance = Callable[[LLWasmInstance], None]


class Shim(Protocol):
    """
    A shim may also have a boolean `wasi` attribute: if it is missing or
    True, WASI is linked in addition to the host modules.
    """

    def create_import_set(self) -> tuple[list[HostModule], BindInstance]: ...


class HostShim:
    """
    The stock shim: it links the given host modules, plus WASI if wasi=True.

    HostShim() is the default used by the CLI, and provides only WASI.
    """
    hostmods: list[HostModule]
    wasi: bool

    def __init__(self, *hostmods: HostModule, wasi: bool = True) -> None:
        self.hostmods = list(hostmods)
        self.wasi = wasi

    def __repr__(self) -> str:
        names = ", ".join(type(h).__name__ for h in self.hostmods)
        return f"<HostShim [{names}] wasi={self.wasi}>"

    def create_import_set(self) -> tuple[list[HostModule], BindInstance]:
        hostmods = list(self.hostmods)

        def bind_instance(ll: LLWasmInstance) -> None:
            for hostmod in hostmods:
                hostmod.ll = ll

        return hostmods, bind_instance


def load_shim(target: str) -> Shim:
    """
    Import a shim given as 'package.module:attr'
    """
    modname, sep, attrname = target.partition(":")
    if not sep or not modname or not attrname:
        raise LauncherError(
            "UsageError", f"Invalid shim '{target}': expected 'package.module:attr'"
        )
    try:
        mod = importlib.import_module(modname)
    except ImportError as e:
        raise LauncherError("UsageError", f"Cannot import shim module '{modname}': {e}")

    obj: Any = getattr(mod, attrname, None)
    if obj is None:
        raise LauncherError(
            "UsageError", f"Shim module '{modname}' has no attribute '{attrname}'"
        )
    if isinstance(obj, type) or (
        callable(obj) and not hasattr(obj, "create_import_set")
    ):
        obj = obj()
    if not hasattr(obj, "create_import_set"):
        raise LauncherError(
            "UsageError", f"'{target}' is not a shim: missing create_import_set()"
        )
    return obj
