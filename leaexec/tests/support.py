import io
import textwrap
from pathlib import Path
from typing import Any, Optional

import pytest
import wasmtime

from leaexec.launcher import InvocationRequest, launch
from leaexec.llwasm import HostModule
from leaexec.shim import HostShim

# functions which don't need memory nor imports
SIMPLE_WAT = """
(module
  (global (export "counter") i32 (i32.const 0))
  (func (export "main") (result i32)
    i32.const 42)
  (func (export "neg") (result i32)
    i32.const -1)
  (func (export "big") (result i32)
    i32.const 300)
  (func (export "nothing"))
  (func (export "half") (result f64)
    f64.const 3.75)
  (func (export "crash") (result i32)
    unreachable)
  (func (export "double") (param i32) (result i32)
    local.get 0
    i32.const 2
    i32.mul)
  (func (export "double64") (param i64) (result i64)
    local.get 0
    i64.const 2
    i64.mul)
  (func (export "floor") (param f64) (result i32)
    local.get 0
    i32.trunc_f64_s)
  (func (export "add") (param i32 i32) (result i32)
    local.get 0
    local.get 1
    i32.add)
)
"""

# a bump allocator, plus entry points taking (ptr, size). "consume" passes
# the buffer to the host, so that tests can check what was copied
MEMORY_WAT = """
(module
  (import "env" "record" (func $record (param i32 i32)))
  (memory (export "memory") 1)
  (global $heap (mut i32) (i32.const 1024))
  (func $malloc (export "__lea_malloc") (param $n i32) (result i32)
    (local $p i32)
    (local.set $p (global.get $heap))
    (global.set $heap (i32.add (global.get $heap) (local.get $n)))
    (local.get $p))
  (export "alloc" (func $malloc))
  (func (export "consume") (param $ptr i32) (param $len i32) (result i32)
    (call $record (local.get $ptr) (local.get $len))
    (local.get $len))
  (func (export "first_byte") (param $ptr i32) (param $len i32) (result i32)
    (i32.load8_u (local.get $ptr)))
  (func (export "floats") (param f64 f64) (result i32)
    i32.const 0)
)
"""

NULL_MALLOC_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "__lea_malloc") (param i32) (result i32)
    i32.const 0)
  (func (export "consume") (param i32 i32) (result i32)
    unreachable)
)
"""

OOB_MALLOC_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "__lea_malloc") (param i32) (result i32)
    i32.const 65535)
  (func (export "consume") (param i32 i32) (result i32)
    unreachable)
)
"""

NO_MEMORY_WAT = """
(module
  (func (export "__lea_malloc") (param i32) (result i32)
    i32.const 16)
  (func (export "consume") (param i32 i32) (result i32)
    local.get 1)
)
"""

WASI_EXIT_WAT = """
(module
  (import "wasi_snapshot_preview1" "proc_exit" (func $exit (param i32)))
  (memory (export "memory") 1)
  (func (export "main") (result i32)
    (call $exit (i32.const 7))
    (i32.const 0))
)
"""

TRAP_IN_START_WAT = """
(module
  (func $start
    unreachable)
  (start $start)
  (func (export "main") (result i32)
    i32.const 0)
)
"""


def compile_wat(tmpdir: Any, name: str, src: str) -> Path:
    """
    Compile the given WAT source and write it to tmpdir/name
    """
    f = tmpdir.join(name)
    f.write_binary(wasmtime.wat2wasm(textwrap.dedent(src)))
    return Path(str(f))


class Recorder(HostModule):
    log: list[tuple[int, bytes]]

    def __init__(self) -> None:
        self.log = []

    def env_record(self, ptr: int, length: int) -> None:
        self.log.append((ptr, bytes(self.ll.mem.read(ptr, length))))


class RecordingShim(HostShim):
    """
    A shim which provides env.record. The last instance created is kept in
    RecordingShim.last, so that CLI tests can inspect what was recorded.
    """
    last: Optional['RecordingShim'] = None
    recorder: Recorder

    def __init__(self) -> None:
        self.recorder = Recorder()
        super().__init__(self.recorder)
        RecordingShim.last = self


@pytest.mark.usefixtures('init')
class LauncherTest:
    tmpdir: Any

    @pytest.fixture
    def init(self, tmpdir):
        self.tmpdir = tmpdir
        self.simple_wasm = compile_wat(tmpdir, 'simple.wasm', SIMPLE_WAT)
        self.memory_wasm = compile_wat(tmpdir, 'memory.wasm', MEMORY_WAT)

    def write_wasm(self, name: str, src: str) -> Path:
        return compile_wat(self.tmpdir, name, src)

    def launch(self, wasm_file: Path, entry_point: str, mode: str = 'none',
               value: Optional[str] = None, *, shim: Any = None,
               **kwargs: Any) -> tuple[int, str, str]:
        """
        Run the launcher and return (exit_code, stdout, stderr)
        """
        req = InvocationRequest(wasm_file, entry_point, mode, value, **kwargs)  # type: ignore
        out = io.StringIO()
        err = io.StringIO()
        code = launch(req, shim, out=out, err=err)
        print(out.getvalue())
        print(err.getvalue())
        return code, out.getvalue(), err.getvalue()
