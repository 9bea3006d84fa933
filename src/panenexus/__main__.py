"""Module entrypoint for `python -m panenexus`."""

from panenexus.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
