"""Allow ``python -m gemini_live``."""

from gemini_live.client.cli_client import main

if __name__ == "__main__":
    main()
