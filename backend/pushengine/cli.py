"""Command line tools for the push engine.

Usage:
    # Generate VAPID keys (one-time setup)
    pushengine generate-keys

    # Run the API server
    pushengine serve --port 8000
"""
import argparse

from .config import settings
from .services.vapid import generate_vapid_keys


def main(argv=None):
    parser = argparse.ArgumentParser(description="Web Push delivery engine")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("generate-keys", help="Generate VAPID key pair")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, default=settings.web_port, help="Port")

    args = parser.parse_args(argv)

    if args.command == "generate-keys":
        keys = generate_vapid_keys()
        print("VAPID Keys Generated Successfully")
        print("-" * 40)
        print(f"Public Key:  {keys['public_key']}")
        print(f"Private Key: {keys['private_key']}")
        print("-" * 40)
        print("\nAdd to your .env file:")
        print(f"VAPID_PUBLIC_KEY={keys['public_key']}")
        print(f"VAPID_PRIVATE_KEY={keys['private_key']}")
        print("VAPID_SUBJECT=mailto:notifications@yourdomain.com")
        return 0

    if args.command == "serve":
        import uvicorn

        uvicorn.run("pushengine.main:app", host=args.host, port=args.port)
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
