"""Module entry point so ``python -m JvmMeta`` mirrors the ``jvm-meta`` script."""

from .cli import main

if __name__ == "__main__":
    main()
