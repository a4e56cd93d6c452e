"""Allow `python -m chime` to launch the REPL."""

from chime.main import run

run()
