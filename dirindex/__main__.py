"""Module entrypoint for ``python -m dirindex``.

All argument parsing and dispatch happen in ``dirindex.cli``.
"""

from .cli import main


if __name__ == "__main__":
    main()
