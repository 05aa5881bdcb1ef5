"""
leaexec: run one exported function of a WebAssembly module from the command
line, and exit with the value it returns.
"""
