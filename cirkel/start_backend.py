#!/usr/bin/env python3
"""
Backend startup wrapper - properly handles process lifecycle
"""
import os
import sys

import uvicorn


def main() -> int:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print("[Backend] Starting Cirkel Backend")
    print(f"[Backend] Server: http://{host}:{port}")
    print("[Backend] Press CTRL+C to stop")
    try:
        uvicorn.run(
            "cirkel.main:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
