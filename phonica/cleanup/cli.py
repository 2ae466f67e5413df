"""CLI entry point for sweeping expired temp uploads.

Usage: python -m phonica.cleanup [ttl_seconds]

Temp uploads that were never claimed by a material are deleted once they
are older than the TTL (``TEMP_FILE_TTL_SECONDS``, default one hour).
Intended to run from cron or a systemd timer.
"""

import asyncio
import logging
import sys

from phonica.audio.storage import AudioMetadataService
from phonica.settings import settings


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the temp cleanup CLI. Returns the exit code."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    args = sys.argv[1:] if argv is None else argv
    service = AudioMetadataService.from_settings(settings)

    if args:
        try:
            service.temp_file_ttl_seconds = int(args[0])
        except ValueError:
            print(f"Error: '{args[0]}' is not a number of seconds", file=sys.stderr)  # noqa: T201
            return 1

    removed = asyncio.run(service.cleanup_temp_files())

    print(f"\n{'=' * 60}")  # noqa: T201
    print("Temp Cleanup Report")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201
    print(f"Directory:    {service.temp_dir}")  # noqa: T201
    print(f"TTL:          {service.temp_file_ttl_seconds}s")  # noqa: T201
    print(f"Removed:      {len(removed)}")  # noqa: T201
    for name in removed:
        print(f"  - {name}")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201
    return 0


if __name__ == "__main__":
    sys.exit(main())
