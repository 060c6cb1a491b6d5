"""Entry point for ``python -m claudekit``."""

from claudekit.cli import run

if __name__ == "__main__":
    run()
