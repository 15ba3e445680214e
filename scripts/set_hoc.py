"""Grant or revoke the head-of-class role.

Usage:
  python scripts/set_hoc.py alice@uni.edu          # grant
  python scripts/set_hoc.py alice@uni.edu --revoke # revoke
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from synapse_backend.auth.crud import get_user_by_email, set_hoc
from synapse_backend.config import load_config
from synapse_backend.db import connect


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("email")
    ap.add_argument("--revoke", action="store_true")
    args = ap.parse_args()

    cfg = load_config()
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_email(conn, args.email)
        if row is None:
            print(f"No user with email {args.email}")
            raise SystemExit(1)
        set_hoc(conn, int(row["user_id"]), not args.revoke)

    print(f"{'Revoked' if args.revoke else 'Granted'} HOC for {args.email}")


if __name__ == "__main__":
    main()
