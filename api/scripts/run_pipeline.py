import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cupid_match import main as m
from cupid_match.errors import PipelineError

PHASES = {
    "create-batch": lambda args: m.repo_create_batch(args.batch),
    "status": lambda args: m.repo_batch_status(args.batch),
    "scoring": lambda args: m.repo_run_scoring(args.batch, args.partition),
    "matching": lambda args: m.repo_run_matching(args.batch, args.partition),
    "assign-cupids": lambda args: m.repo_assign_cupids(args.batch, args.partition),
    "refresh-shortlists": lambda args: m.repo_refresh_shortlists(args.batch, args.partition),
    "promote": lambda args: m.repo_promote_selections(args.batch, args.partition),
    "reveal": lambda args: m.repo_reveal_matches(args.batch, args.partition, skip_curation=args.skip_curation),
    "reset": lambda args: m.repo_reset_batch(args.batch),
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one phase of the batch matching pipeline")
    parser.add_argument("phase", choices=sorted(PHASES))
    parser.add_argument("--batch", type=int, required=True)
    parser.add_argument("--partition", type=str, default="production", choices=["test", "production"])
    parser.add_argument("--skip-curation", action="store_true")
    parser.add_argument("--yes", action="store_true", help="confirm destructive phases")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    if args.phase == "reset" and not args.yes:
        print(f"Refusing to reset batch {args.batch} without --yes", file=sys.stderr)
        return 2

    try:
        report = PHASES[args.phase](args)
    except PipelineError as exc:
        print(json.dumps(exc.to_detail(), indent=2), file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
