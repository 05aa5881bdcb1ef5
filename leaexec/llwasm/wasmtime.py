"""
A pythonic wrapper around wasmtime.
"""

from pathlib import Path
from typing import Any, Optional, Union
from typing_extensions import Self
import wasmtime as wt
from leaexec.errors import LauncherError
from .base import HostModule, LLWasmMemoryBase, LLWasmType

WasmTrap = wt.Trap
WasmExitTrap = wt.ExitTrap
WasmtimeError = wt.WasmtimeError

ENGINE = wt.Engine()

class LLWasmModule:
    filename: str
    mod: wt.Module

    def __init__(self, filename: Union[str, Path]) -> None:
        self.filename = str(filename)
        self.mod = wt.Module.from_file(ENGINE, self.filename)

    @classmethod
    def from_bytes(cls, data: bytes, filename: str = '<bytes>') -> Self:
        llmod = cls.__new__(cls)
        llmod.filename = filename
        llmod.mod = wt.Module(ENGINE, data)
        return llmod

    def __repr__(self) -> str:
        return f'<LLWasmModule {self.filename}>'


def get_linker(
        store: wt.Store,
        llmod: LLWasmModule,
        *,
        wasi_config: Optional[wt.WasiConfig] = None,
        hostmods: Optional[list[HostModule]] = None,
    ) -> wt.Linker:
    """
    Setup a Linker which can be used to instantiate llmod.

    If wasi_config is supplied, the module will be linked against WASI.

    The remaining non-wasi imports expected by llmod are searched inside the
    HostModules.
    """
    hostmods = hostmods or []
    def find_meth(imp: Any) -> Any:
        assert hostmods is not None
        methname = f'{imp.module}_{imp.name}'
        for hostmod in hostmods:
            meth = getattr(hostmod, methname, None)
            if meth is not None:
                return meth
        raise LauncherError(
            'ModuleError',
            f'Missing WASM import: {imp.module}.{imp.name} '
            f'(no host module provides {methname})'
        )

    py2w = {
        int: wt.ValType.i32(),
        float: wt.ValType.f64(),
    }

    def FuncType_from_pyfunc(pyfunc: Any) -> wt.FuncType:
        annotations = pyfunc.__annotations__.copy()
        py_restype = annotations.pop('return')
        if py_restype is None:
            restypes = []
        else:
            restypes = [py2w[py_restype]]
        args = [py2w[pytype] for pytype in annotations.values()]
        return wt.FuncType(args, restypes)

    def get_wasmfunc(imp: Any) -> wt.Func:
        meth = find_meth(imp)
        functype = FuncType_from_pyfunc(meth)
        wasmfunc = wt.Func(store, functype, meth)
        return wasmfunc

    linker = wt.Linker(store.engine)
    if wasi_config:
        store.set_wasi(wasi_config)
        linker.define_wasi()

    for imp in llmod.mod.imports:
        if imp.module.startswith('wasi_'):
            if wasi_config:
                continue
            raise LauncherError(
                'ModuleError',
                f'Missing WASM import: {imp.module}.{imp.name} '
                f'(WASI is disabled)'
            )
        func = get_wasmfunc(imp)
        linker.define(store, imp.module, imp.name, func)  # type: ignore

    return linker

def valtype_name(t: wt.ValType) -> str:
    for name in LLWasmType.__args__:  # type: ignore
        if t == getattr(wt.ValType, name)():
            return name
    return str(t)

def get_wasi_config() -> wt.WasiConfig:
    wasi_config = wt.WasiConfig()
    wasi_config.inherit_stdin()
    wasi_config.inherit_stdout()
    wasi_config.inherit_stderr()
    return wasi_config


class LLWasmInstance:
    llmod: LLWasmModule
    store: wt.Store
    instance: wt.Instance
    mem: Optional['LLWasmMemory']

    def __init__(self, llmod: LLWasmModule,
                 hostmods: list[HostModule]=[], *, wasi: bool = True) -> None:
        self.llmod = llmod
        self.store = wt.Store(ENGINE)
        linker = get_linker(
            self.store,
            self.llmod,
            wasi_config = get_wasi_config() if wasi else None,
            hostmods = hostmods
        )
        self.instance = linker.instantiate(self.store, self.llmod.mod)
        memory = self.instance.exports(self.store).get('memory')
        if isinstance(memory, wt.Memory):
            self.mem = LLWasmMemory(self.store, memory)
        else:
            # modules which only export functions are fine, as long as
            # nobody needs to copy bytes into them
            self.mem = None

    def __repr__(self) -> str:
        return f'<LLWasmInstance {self.llmod.filename}>'

    @classmethod
    def from_file(cls, f: Union[str, Path],
                  hostmods: list[HostModule]=[], *, wasi: bool = True) -> Self:
        llmod = LLWasmModule(f)
        return cls(llmod, hostmods, wasi=wasi)

    def get_export(self, name: str) -> Any:
        exports = self.instance.exports(self.store)
        wasm_obj = exports.get(name)
        if wasm_obj is None:
            raise AttributeError(name)
        return wasm_obj

    def has_export(self, name: str) -> bool:
        return self.instance.exports(self.store).get(name) is not None

    def is_function(self, name: str) -> bool:
        return isinstance(self.instance.exports(self.store).get(name), wt.Func)

    def all_exports(self) -> list[str]:
        return [exp.name for exp in self.llmod.mod.exports]

    def get_signature(self, name: str) -> tuple[list[str], list[str]]:
        """
        Return the names of the param and result types of the given
        function, e.g. (["i32", "i32"], ["i32"])
        """
        func = self.get_export(name)
        assert isinstance(func, wt.Func)
        functype = func.type(self.store)
        params = [valtype_name(t) for t in functype.params]
        results = [valtype_name(t) for t in functype.results]
        return params, results

    def call(self, name: str, *args: Any) -> Any:
        func = self.get_export(name)
        assert isinstance(func, wt.Func)
        return func(self.store, *args)


class LLWasmMemory(LLWasmMemoryBase):
    """
    Thin wrapper around wt.Memory
    """
    store: wt.Store
    mem: wt.Memory

    def __init__(self, store: wt.Store, mem: wt.Memory):
        self.store = store
        self.mem = mem

    def read(self, addr: int, n: int) -> bytearray:
        """
        Read n bytes of memory at the given address.
        """
        return self.mem.read(self.store, addr, addr+n)

    def write(self, addr: int, b: bytes) -> None:
        self.mem.write(self.store, b, addr)

    def size(self) -> int:
        """
        Current size of the linear memory, in bytes
        """
        return self.mem.data_len(self.store)
