"""Allow ``python -m claude_cli_sdk``."""

from .cli import main

if __name__ == "__main__":
    main()
