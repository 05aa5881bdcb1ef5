"""
A pythonic wrapper around wasmtime, used by the launcher.

It is called 'LL' because it exposes a low-level view on the code: the
concept of strings doesn't exist, we only have ints, floats and bytes of
memory. Anything higher level (encoding arguments, choosing the call shape,
mapping results to exit codes) is done by leaexec.launcher.
"""
from .base import HostModule, LLWasmType
from .wasmtime import (
    LLWasmModule, LLWasmInstance, LLWasmMemory, WasmTrap, WasmExitTrap,
    WasmtimeError, get_linker, get_wasi_config
)
