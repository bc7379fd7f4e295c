import argparse
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cupid_match.database import SessionLocal
from cupid_match.main import run_migrations
from cupid_match.questions import get_question_schema
from cupid_match.services.seeding import seed_test_users


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed test-partition users and cupids")
    parser.add_argument("--n-users", type=int, default=20)
    parser.add_argument("--n-cupids", type=int, default=2)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--reset", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    run_migrations()
    schema = get_question_schema()
    with SessionLocal() as db:
        summary = seed_test_users(
            db,
            schema,
            n_users=args.n_users,
            n_cupids=args.n_cupids,
            seed=args.seed,
            reset=args.reset,
        )
        db.commit()
    print(summary)


if __name__ == "__main__":
    main()
