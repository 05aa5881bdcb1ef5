from typing import Optional, TextIO


class ColorFormatter:
    default = '00'
    darkred = '31'
    darkgreen = '32'
    brown = '33'
    darkblue = '34'
    teal = '36'
    darkgray = '30;01'
    red = '31;01'
    green = '32;01'
    yellow = '33;01'
    blue = '34;01'
    turquoise = '36;01'
    white = '37;01'

    # semantic aliases used by the launcher diagnostics
    info = teal
    error = red
    note = darkgray

    def __init__(self, use_colors: bool) -> None:
        self.use_colors = use_colors

    @classmethod
    def for_stream(cls, stream: TextIO, *, enabled: bool = True) -> 'ColorFormatter':
        """
        Enable colors only if the stream is connected to a terminal
        """
        isatty = getattr(stream, 'isatty', None)
        use_colors = enabled and isatty is not None and isatty()
        return cls(use_colors)

    def set(self, color: Optional[str], s: str) -> str:
        if color is None or not self.use_colors:
            return s
        try:
            code = getattr(self, color)
        except AttributeError:
            code = color
        return f'\x1b[{code}m{s}\x1b[00m'
