import struct
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from .wasmtime import LLWasmInstance

LLWasmType = Literal['i32', 'i64', 'f32', 'f64']


class HostModule:
    """
    Base class for host modules.

    Each host module can provide one or more WASM imports, used by
    get_linker(). An import "env"."foo" is looked up as a method called
    env_foo, and its wasm signature is derived from the annotations: int is
    i32, float is f64, and a None return type means no result.
    """
    ll: 'LLWasmInstance' # this attribute is set by the shim's bind_instance


class LLWasmMemoryBase:

    def read(self, addr: int, n: int) -> bytearray:
        raise NotImplementedError

    def write(self, addr: int, b: bytes) -> None:
        raise NotImplementedError

    def size(self) -> int:
        raise NotImplementedError

    def read_i32(self, addr: int) -> int:
        rawbytes = self.read(addr, 4)
        return struct.unpack('<i', rawbytes)[0]

    def read_i8(self, addr: int) -> int:
        rawbytes = self.read(addr, 1)
        return rawbytes[0]

    def read_f64(self, addr: int) -> float:
        rawbytes = self.read(addr, 8)
        return struct.unpack('<d', rawbytes)[0]

    def read_cstr(self, addr: int) -> bytearray:
        """
        Read the NULL-terminated string starting at addr.

        WARNING: this is inefficient because it reads one byte at a time.
        """
        n = 0
        while self.read_i8(addr + n) != 0:
            n += 1
        return self.read(addr, n)

    def write_i32(self, addr: int, v: int) -> None:
        self.write(addr, struct.pack('<i', v))

    def write_i8(self, addr: int, v: int) -> None:
        self.write(addr, struct.pack('b', v))

    def write_f64(self, addr: int, v: float) -> None:
        self.write(addr, struct.pack('<d', v))

    def contains(self, addr: int, n: int) -> bool:
        """
        Check whether the range [addr, addr+n) lies inside the memory
        """
        return 0 <= addr and addr + n <= self.size()
