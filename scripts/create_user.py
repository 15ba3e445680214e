"""Create a user.

Usage:
  python scripts/create_user.py --email alice@uni.edu --password '...' \
      --full-name "Alice Doe" --department CS --academic-year 2 [--hoc]

NOTE: This is intended for local/dev.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from synapse_backend.auth.crud import create_user
from synapse_backend.config import load_config
from synapse_backend.db import connect, init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--full-name", required=True)
    ap.add_argument("--department", required=True)
    ap.add_argument("--academic-year", required=True)
    ap.add_argument("--hoc", action="store_true", help="Grant the head-of-class role")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            email=args.email,
            password=args.password,
            full_name=args.full_name,
            department=args.department,
            academic_year=args.academic_year,
            is_hoc=args.hoc,
            rounds=cfg.AUTH_PASSWORD_ROUNDS,
        )

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
