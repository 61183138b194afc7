from __future__ import annotations

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the rmmsync HTTP API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    # Logging is configured by create_app; keep uvicorn from installing its own root config.
    uvicorn.run("rmmsync.apps.api.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
