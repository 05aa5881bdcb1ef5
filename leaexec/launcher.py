"""
The launcher: instantiate a wasm module, call one of its exports with (at
most) one argument, and turn the result into a process exit code.

The argument is passed in one of four ways:

  - 'none': the entry point is called without arguments

  - 'number': the value is parsed as a number and passed as the single
    argument, converted to the type of the wasm param

  - 'string' and 'file': the bytes (either the UTF-8 encoding of the value or
    the content of the file) are copied into a block of linear memory
    obtained by calling the allocator exported by the module, and the entry
    point is called with (ptr, length). The block is never freed: its
    lifetime is owned by the module.
"""

import math
import pdb as stdlib_pdb
import re
import sys
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Literal, Optional, TextIO, Union

from leaexec.color import ColorFormatter
from leaexec.errors import ErrorType, LauncherError
from leaexec.llwasm import (
    LLWasmInstance, LLWasmModule, WasmExitTrap, WasmTrap, WasmtimeError
)
from leaexec.shim import HostShim, Shim

ArgMode = Literal["none", "number", "string", "file"]
ALL_ARG_MODES = ArgMode.__args__  # type: ignore

DEFAULT_ALLOCATOR = "__lea_malloc"

INT_BITS = {"i32": 32, "i64": 64}
FLOAT_TYPES = ("f32", "f64")


@dataclass
class InvocationRequest:
    wasm_file: Path
    entry_point: str
    mode: ArgMode = "none"
    value: Optional[str] = None
    allocator: str = DEFAULT_ALLOCATOR
    timeit: bool = False

    def __post_init__(self) -> None:
        if self.mode not in ALL_ARG_MODES:
            raise LauncherError("UsageError", f"Unknown flag: --{self.mode}")
        if self.mode != "none" and not self.value:
            raise LauncherError("UsageError", f"Missing value for flag --{self.mode}")

    @property
    def flag(self) -> Optional[str]:
        if self.mode == "none":
            return None
        return f"--{self.mode}"

    @property
    def nargs(self) -> int:
        """
        Number of params the entry point must accept
        """
        return {"none": 0, "number": 1, "string": 2, "file": 2}[self.mode]


# 0x/0o/0b literals are only valid without a sign
PREFIXED_INT = re.compile(r"0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+")
DECIMAL_INT = re.compile(r"[+-]?[0-9]+")


def parse_number(value: str) -> Union[int, float]:
    """
    Parse the value of --number.

    Surrounding whitespace is ignored and a blank value is 0. Integer
    literals are kept exact, everything else goes through float(). Digit
    separators, NaN and infinities are rejected.
    """
    s = value.strip()
    if not s:
        return 0
    if PREFIXED_INT.fullmatch(s):
        return int(s, 0)
    if DECIMAL_INT.fullmatch(s):
        return int(s)
    num = math.nan
    if "_" not in s:
        try:
            num = float(s)
        except ValueError:
            pass
    if not math.isfinite(num):
        raise LauncherError(
            "InvalidArgument", f"Invalid number provided for --number: {value}"
        )
    return num


def convert_number(num: Union[int, float], wasm_type: str) -> Union[int, float]:
    """
    Convert num to a value which can be passed to a param of type wasm_type.

    Integers are truncated toward zero and wrapped modulo 2**bits into the
    signed range of the type.
    """
    if wasm_type in FLOAT_TYPES:
        return float(num)
    if wasm_type not in INT_BITS:
        raise LauncherError(
            "NotFoundError", f"Cannot pass a number to a param of type {wasm_type}"
        )
    bits = INT_BITS[wasm_type]
    n = int(num) & ((1 << bits) - 1)
    if n >= 1 << (bits - 1):
        n -= 1 << bits
    return n


def coerce_exit_code(res: Any) -> int:
    """
    Turn the value returned by the entry point into a process exit code.

    void -> 0; ints are reduced modulo 256, so that -1 becomes 255 as it
    would with a POSIX exit(); floats are truncated toward zero first, and
    NaN/infinities are a failure (1). With multi-value results only the first
    value counts.
    """
    if isinstance(res, (list, tuple)):
        if not res:
            return 0
        res = res[0]
    if res is None:
        return 0
    if isinstance(res, float):
        if not math.isfinite(res):
            return 1
        res = int(res)
    return int(res) % 256


class Launcher:
    request: InvocationRequest
    shim: Shim
    out: TextIO
    err: TextIO

    def __init__(
        self,
        request: InvocationRequest,
        shim: Optional[Shim] = None,
        *,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        use_colors: bool = True,
    ) -> None:
        self.request = request
        self.shim = shim if shim is not None else HostShim()
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.out_fmt = ColorFormatter.for_stream(self.out, enabled=use_colors)
        self.err_fmt = ColorFormatter.for_stream(self.err, enabled=use_colors)

    def info(self, msg: str) -> None:
        tag = self.out_fmt.set("info", "[INFO]")
        print(f"{tag} {msg}", file=self.out)

    def report(self, err: LauncherError) -> None:
        req = self.request
        err.add_context(f"module: {req.wasm_file}")
        err.add_context(f"entry point: {req.entry_point}")
        if req.flag:
            err.add_context(f"flag: {req.flag} {req.value!r}")
        print(err.format(use_colors=self.err_fmt.use_colors), file=self.err)

    @contextmanager
    def wasm_errors(self, etype: ErrorType) -> Iterator[None]:
        """
        Translate the exceptions raised by wasmtime into LauncherErrors.

        Traps always become RuntimeTrapError, other wasmtime errors become
        etype. WASI exits are left alone, see run().
        """
        try:
            yield
        except WasmExitTrap:
            raise
        except WasmTrap as e:
            raise LauncherError("RuntimeTrapError", f"VM error: {e.message}") from e
        except WasmtimeError as e:
            raise LauncherError.wrap(etype, e) from e

    # ========== preprocessing ==========

    def read_file(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise LauncherError("IOError", f"Cannot read {path}: {e.strerror or e}") from e

    def prepare_argument(self) -> Union[None, int, float, bytes]:
        req = self.request
        if req.mode == "none":
            return None
        assert req.value is not None
        if req.mode == "number":
            return parse_number(req.value)
        elif req.mode == "string":
            # undecodable argv bytes come back as they were given
            return req.value.encode("utf-8", errors="surrogateescape")
        elif req.mode == "file":
            return self.read_file(Path(req.value))
        assert False, f"Unknown mode: {req.mode}"

    # ========== wasm ==========

    def instantiate(self) -> LLWasmInstance:
        req = self.request
        data = self.read_file(req.wasm_file)
        with self.wasm_errors("ModuleError"):
            llmod = LLWasmModule.from_bytes(data, str(req.wasm_file))
        hostmods, bind_instance = self.shim.create_import_set()
        wasi = getattr(self.shim, "wasi", True)
        with self.wasm_errors("ModuleError"):
            ll = LLWasmInstance(llmod, hostmods, wasi=wasi)
        bind_instance(ll)
        return ll

    def check_function(self, ll: LLWasmInstance, name: str) -> tuple[list[str], list[str]]:
        if not ll.has_export(name):
            raise LauncherError(
                "NotFoundError",
                f"'{name}' function not exported from {self.request.wasm_file}"
            )
        if not ll.is_function(name):
            raise LauncherError(
                "NotFoundError",
                f"'{name}' is exported from {self.request.wasm_file}, "
                f"but it is not a function"
            )
        return ll.get_signature(name)

    def resolve_entry_point(self, ll: LLWasmInstance) -> list[str]:
        req = self.request
        params, results = self.check_function(ll, req.entry_point)
        if len(params) != req.nargs:
            sig = ", ".join(params)
            raise LauncherError(
                "NotFoundError",
                f"'{req.entry_point}' has the wrong type: it takes ({sig}), "
                f"but it must take {req.nargs} argument(s) when called "
                f"with {req.flag or 'no flag'}"
            )
        if req.nargs == 2 and not all(p in INT_BITS for p in params):
            raise LauncherError(
                "NotFoundError",
                f"'{req.entry_point}' has the wrong type: (pointer, size) "
                f"must be integers, got ({', '.join(params)})"
            )
        return params

    def copy_to_memory(self, ll: LLWasmInstance, data: bytes) -> int:
        """
        Allocate len(data) bytes inside the module and copy data there.

        Return the pointer as returned by the allocator, which is what must
        be passed back to the module.
        """
        name = self.request.allocator
        if ll.mem is None:
            raise LauncherError(
                "NotFoundError",
                f"'memory' not exported from {self.request.wasm_file}"
            )
        params, results = self.check_function(ll, name)
        if (len(params) != 1 or len(results) != 1
                or params[0] not in INT_BITS or results[0] not in INT_BITS):
            raise LauncherError(
                "NotFoundError",
                f"'{name}' has the wrong type: the allocator must take a size "
                f"and return a pointer"
            )
        n = len(data)
        ptr = ll.call(name, convert_number(n, params[0]))
        if not ptr:
            raise LauncherError("AllocationError", f"{name} returned NULL")
        # pointers are unsigned, but wasmtime gives us a signed i32
        addr = ptr & ((1 << INT_BITS[results[0]]) - 1)
        if not ll.mem.contains(addr, n):
            raise LauncherError(
                "AllocationError",
                f"{name} returned an out-of-bounds block: "
                f"address {addr}, size {n}, memory size {ll.mem.size()}"
            )
        ll.mem.write(addr, data)
        return ptr

    def call(self, ll: LLWasmInstance, args: list[Any]) -> Any:
        req = self.request
        ctx = timer(req.entry_point, self.err) if req.timeit else nullcontext()
        with ctx:
            return ll.call(req.entry_point, *args)

    # ========== main logic ==========

    def run(self) -> int:
        """
        Perform the invocation and return the exit code.

        Errors are raised as LauncherError, see launch() for the version
        which reports them.
        """
        req = self.request
        arg = self.prepare_argument()
        try:
            ll = self.instantiate()
            params = self.resolve_entry_point(ll)
            self.info(
                f"Successfully instantiated wasm module. "
                f"Entry point '{req.entry_point}' found."
            )
            with self.wasm_errors("RuntimeTrapError"):
                res = self.dispatch(ll, params, arg)
        except WasmExitTrap as e:
            code = e.code % 256
            self.info(f"Module exited via proc_exit with exit code: {code}")
            return code

        code = coerce_exit_code(res)
        if isinstance(res, int) and res == code:
            self.info(f"Entry point returned exit code: {code}")
        else:
            self.info(f"Entry point returned {res!r}, exit code: {code}")
        return code

    def dispatch(self, ll: LLWasmInstance, params: list[str],
                 arg: Union[None, int, float, bytes]) -> Any:
        req = self.request
        if req.mode == "none":
            self.info("No arguments provided. Calling entry point without arguments.")
            return self.call(ll, [])

        elif req.mode == "number":
            assert isinstance(arg, (int, float))
            self.info(f"Argument is a number ('{arg}').")
            self.info("Calling entry point with the number.")
            return self.call(ll, [convert_number(arg, params[0])])

        assert isinstance(arg, bytes)
        if req.mode == "file":
            self.info(f"Argument is a file ('{req.value}'). Reading content.")
            what = "file content"
        else:
            self.info("Argument is a string.")
            what = "string content"
        ptr = self.copy_to_memory(ll, arg)
        self.info(
            f"Copied {what} to wasm memory at address {ptr} (size: {len(arg)})."
        )
        self.info("Calling entry point with (pointer, size).")
        return self.call(ll, [convert_number(ptr, params[0]),
                              convert_number(len(arg), params[1])])


def launch(
    request: InvocationRequest,
    shim: Optional[Shim] = None,
    *,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
    use_colors: bool = True,
    post_mortem: bool = False,
) -> int:
    """
    Run the invocation described by request, report any error, and return
    the exit code: the coerced result of the entry point, or 1 on failure.
    """
    launcher = Launcher(request, shim, out=out, err=err, use_colors=use_colors)
    try:
        return launcher.run()
    except Exception as e:
        if isinstance(e, LauncherError):
            launcher.report(e)
        else:
            launcher.report(LauncherError.wrap("UnknownError", e))
        if post_mortem:
            # interp-level debugger
            stdlib_pdb.post_mortem(e.__traceback__)
        return 1


@contextmanager
def timer(name: str, stream: TextIO) -> Iterator[None]:
    a = time.time()
    yield
    b = time.time()
    print(f"{name}(): {b - a:.3f} seconds", file=stream)
