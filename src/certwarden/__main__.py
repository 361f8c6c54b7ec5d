"""Allow ``python -m certwarden``."""

from certwarden.cli.main import main

main()
