import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from synapse_backend.config import load_config
from synapse_backend.db import init_db, wait_for_db


def main() -> None:
    cfg = load_config()
    wait_for_db(cfg.DB_DSN, retries=cfg.DB_CONNECT_RETRIES, delay_seconds=cfg.DB_CONNECT_RETRY_DELAY_SECONDS)
    init_db(cfg.DB_DSN)
    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
