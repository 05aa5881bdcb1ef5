import dataclasses
import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Callable, Optional, Sequence, no_type_check

import typer
import typer.core
from typer import Argument, Option

from leaexec.errors import LauncherError
from leaexec.launcher import DEFAULT_ALLOCATOR, ArgMode, InvocationRequest, launch
from leaexec.shim import HostShim, Shim, load_shim


def _typer_exception(name: str) -> type[Exception]:
    """
    Return the click exception class called 'name' that typer raises.

    Recent typer releases are built on a bundled copy of click instead of
    the click package, so the classes must come from typer itself.
    """
    for cls in typer.BadParameter.__mro__:
        if cls.__name__ == name:
            return cls
    raise TypeError(f"typer has no {name}")


UsageError = _typer_exception("UsageError")
ClickException = _typer_exception("ClickException")


EPILOG = """\
Examples:

  leaexec module.wasm main

  leaexec module.wasm main --number 123

  leaexec module.wasm main --string "hello world"

  leaexec module.wasm main --file data.json
"""


@dataclass
class Base_Args:
    """These arguments configure the launcher itself"""

    allocator: Annotated[
        str,
        Option(
            "--allocator",
            metavar="NAME",
            help="Exported function used to allocate --string/--file buffers",
        ),
    ] = DEFAULT_ALLOCATOR

    shim: Annotated[
        Optional[str],
        Option(
            "--shim",
            metavar="MODULE:ATTR",
            envvar="LEAEXEC_SHIM",
            help="Host-import shim to link against (default: WASI only)",
        ),
    ] = None

    timeit: Annotated[
        bool,
        Option("--timeit", help="Print execution time of the entry point"),
    ] = False

    pdb: Annotated[
        bool,
        Option("--pdb", help="Enter interp-level debugger in case of error"),
    ] = False

    color: Annotated[
        bool,
        Option("--color/--no-color", help="Colorize the output on terminals"),
    ] = True


@dataclass
class _argument_mixin:
    string: Annotated[
        Optional[str],
        Option("--string", metavar="VALUE", help="Pass a string to the entry point."),
    ] = None

    number: Annotated[
        Optional[str],
        Option("--number", metavar="VALUE", help="Pass a number to the entry point."),
    ] = None

    file: Annotated[
        Optional[str],
        Option(
            "--file",
            metavar="PATH",
            help="Pass the contents of a file to the entry point.",
        ),
    ] = None

    def __post_init__(self) -> None:
        # at most one of --string, --number, --file
        flags = [f for f in ("string", "number", "file") if getattr(self, f) is not None]
        if len(flags) > 1:
            msg = "Too many arguments specified: "
            msg += " ".join(["--" + f for f in flags])
            raise typer.BadParameter(msg)

    def get_mode(self) -> tuple[ArgMode, Optional[str]]:
        if self.string is not None:
            return "string", self.string
        elif self.number is not None:
            return "number", self.number
        elif self.file is not None:
            return "file", self.file
        return "none", None


@dataclass
class Module_Args:
    wasm_file: Annotated[
        Path,
        Argument(help="Path to the WebAssembly module", show_default=False),
    ]

    entry_point: Annotated[
        str,
        Argument(help="Name of the exported function to call", show_default=False),
    ]


@dataclass
class Execute_Args(Base_Args, _argument_mixin, Module_Args):
    def to_request(self) -> InvocationRequest:
        mode, value = self.get_mode()
        return InvocationRequest(
            wasm_file=self.wasm_file,
            entry_point=self.entry_point,
            mode=mode,
            value=value,
            allocator=self.allocator,
            timeit=self.timeit,
        )


# adapted from the recipe by @tbenthompson (Ben Thompson):
# https://github.com/fastapi/typer/issues/154#issuecomment-1544876144
@no_type_check
def dataclass_command(func: Callable) -> Callable:
    """
    Turn a function taking a single dataclass into a function that typer
    can expose as a command: the fields of the dataclass become the
    arguments and options of the command.
    """
    sig = inspect.signature(func)
    cls = list(sig.parameters.values())[0].annotation
    assert dataclasses.is_dataclass(cls)

    def wrapped(**conf):
        return func(cls(**conf))

    # the signature of cls.__init__, minus self
    init_sig = inspect.signature(cls.__init__)
    params = [p for p in init_sig.parameters.values() if p.name != "self"]
    wrapped.__signature__ = init_sig.replace(parameters=params)
    wrapped.__name__ = func.__name__
    wrapped.__doc__ = func.__doc__
    return wrapped


class LauncherCommand(typer.core.TyperCommand):
    """
    click exits with code 2 on usage errors, but every failure of the
    launcher must exit with code 1.
    """

    def make_context(
        self,
        info_name: Optional[str],
        args: list[str],
        parent: Optional[typer.Context] = None,
        **extra: Any,
    ) -> typer.Context:
        try:
            return super().make_context(info_name, args, parent, **extra)
        except UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx: typer.Context) -> Any:
        try:
            return super().invoke(ctx)
        except UsageError as e:
            e.exit_code = 1
            raise


app = typer.Typer(
    pretty_exceptions_enable=False,
    add_completion=False,
    rich_markup_mode=None,
)


@app.command(cls=LauncherCommand, epilog=EPILOG)
@dataclass_command
def execute(args: Execute_Args) -> None:
    """
    Call ENTRY_POINT of the WebAssembly module WASM_FILE, with at most one
    of --string, --number or --file as argument, and exit with the value it
    returns.
    """
    code = do_execute(args)
    raise typer.Exit(code)


def do_execute(args: Execute_Args) -> int:
    try:
        shim: Shim = load_shim(args.shim) if args.shim else HostShim()
        request = args.to_request()
    except LauncherError as e:
        raise UsageError(e.message)
    return launch(request, shim, use_colors=args.color, post_mortem=args.pdb)


def run(argv: Sequence[str]) -> int:
    """
    Parse argv, run the launcher and return the exit code, without exiting
    the process.
    """
    try:
        rv = app(args=list(argv), prog_name="leaexec", standalone_mode=False)
    except ClickException as e:
        e.show()
        return e.exit_code
    if isinstance(rv, int):
        return rv
    return 0
