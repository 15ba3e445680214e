import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import uvicorn

from synapse_backend.config import load_config
from synapse_backend.errors import ConfigurationError


def main() -> None:
    cfg = load_config()
    if not cfg.AUTH_JWT_SECRET:
        # Fail fast rather than serve requests that can never authenticate.
        print("FATAL: JWT_SECRET is not set. Add JWT_SECRET=<strong random value> to your environment or .env")
        raise SystemExit(1)
    try:
        uvicorn.run(
            "synapse_backend.api.server:create_app",
            factory=True,
            host=cfg.API_HOST,
            port=cfg.API_PORT,
            reload=False,
        )
    except ConfigurationError as e:
        print(f"FATAL: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
