"""Allow ``python -m gate_remote``."""

from gate_remote._cli import main

main()
