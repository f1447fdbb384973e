#!/usr/bin/env python3
"""
Run the reconciler API with uvicorn.

    python -m curlara.start_backend --port 8000
"""
import argparse
import os
import sys

import uvicorn

# Allow running from a checkout without installing the package
workspace_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if workspace_root not in sys.path:
    sys.path.insert(0, workspace_root)


def main() -> None:
    parser = argparse.ArgumentParser(description="Start the Curlara payment reconciler")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    uvicorn.run(
        "curlara.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
