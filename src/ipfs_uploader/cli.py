import argparse
from collections.abc import Sequence

from ipfs_uploader.__about__ import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ipfs-uploader", description="Chunked uploads into IPFS.")
    parser.add_argument("--version", action="version", version=f"ipfs-uploader v{__version__}")
    commands = parser.add_subparsers(dest="command")
    serve = commands.add_parser("serve", help="run the HTTP server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--backend", choices=["ipfs", "mock"], default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv if argv is not None else [])
    if args.command != "serve":
        print(f"ipfs-uploader v{__version__}")
        return

    import uvicorn

    from ipfs_uploader.config import Settings
    from ipfs_uploader.server import create_app

    settings = Settings.from_env(host=args.host, port=args.port, backend=args.backend)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level)


def run() -> None:
    import sys

    main(sys.argv[1:])


if __name__ == "__main__":
    run()
