"""
Command-line entrypoint.
`tailburn send ...` hosts a file; `tailburn receive <url>` fetches it.
"""

from tailburn_backend.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
