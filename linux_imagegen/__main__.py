"""Allow running the CLI with ``python -m linux_imagegen``."""

from linux_imagegen.cli import app

if __name__ == "__main__":
    app()
