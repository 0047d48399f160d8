"""Command line entry point for the election ledger.

Usage examples:
    election-ledger serve --port 5000
    election-ledger list-elections --data-dir data
    election-ledger tally 1
    election-ledger export-votes votes.csv
    election-ledger aggregate site-a.csv site-b.csv
    election-ledger verify-audit --audit-dir logs
"""

import argparse
import logging
import os
import sys

from election_ledger.audit.audit_logger import AuditLogger
from election_ledger.errors import LedgerError
from election_ledger.ledger import ElectionLedger

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def open_ledger(data_dir: str) -> ElectionLedger:
    # commands only write the tables when load has to create the default admin
    ledger = ElectionLedger(data_dir=data_dir, autosave=False)
    ledger.load()
    return ledger


def serve(host: str, port: int, debug: bool):
    from election_ledger import app
    app.run(host=host, port=port, debug=debug)
    return 0


def list_elections(data_dir: str):
    ledger = open_ledger(data_dir)
    for election in ledger.list_elections():
        print(f"{election.id}\t{election.phase.value}\t{election.title}\t"
              f"{', '.join(election.candidates)}")
    return 0


def tally(data_dir: str, election_id: str):
    result = open_ledger(data_dir).tally(election_id)
    print(f"Election {result.election_id}: {result.election_title}")
    for candidate in result.ranking:
        print(f"  {candidate.name}: {candidate.votes} ({candidate.percentage:.2f}%)")
    print(f"Total votes: {result.total_votes}")
    print(f"Winner: {result.winner.name}")
    return 0


def export_votes(data_dir: str, output: str):
    written = open_ledger(data_dir).export_votes_csv(output)
    print(f"Exported {written} votes to {output}")
    return 0


def aggregate(paths):
    totals = ElectionLedger.aggregate_vote_exports(paths)
    print("election_id,choice,votes")
    for (election_id, choice), count in sorted(totals.items()):
        print(f"{election_id},{choice},{count}")
    return 0


def verify_audit(audit_dir: str):
    if not os.path.exists(os.path.join(audit_dir, 'audit.log')):
        print(f"No audit log in {audit_dir}")
        return 0
    valid = AuditLogger(log_dir=audit_dir).verify_log_integrity()
    print("Audit log intact" if valid else "Audit log FAILED verification")
    return 0 if valid else 2


def build_parser():
    p = argparse.ArgumentParser(prog="election-ledger")
    p.add_argument("--log-level", default=os.environ.get("LEDGER_LOG_LEVEL", "INFO"))
    p.add_argument("--data-dir", default=os.environ.get("LEDGER_DATA_DIR", "data"))
    sub = p.add_subparsers(dest="cmd")

    s = sub.add_parser("serve", help="run the HTTP API")
    s.add_argument("--host", default="127.0.0.1")
    s.add_argument("--port", type=int, default=5000)
    s.add_argument("--debug", action="store_true")

    sub.add_parser("list-elections", help="list elections and their phases")

    t = sub.add_parser("tally", help="print the results of one election")
    t.add_argument("election_id")

    e = sub.add_parser("export-votes", help="write every vote to a CSV file")
    e.add_argument("output")

    a = sub.add_parser("aggregate", help="sum vote counts across export files")
    a.add_argument("paths", nargs="+")

    v = sub.add_parser("verify-audit", help="check the audit log hash chain and signatures")
    v.add_argument("--audit-dir", default=os.environ.get("LEDGER_AUDIT_DIR", "logs"))
    return p


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        if args.cmd == "serve":
            return serve(args.host, args.port, args.debug)
        elif args.cmd == "list-elections":
            return list_elections(args.data_dir)
        elif args.cmd == "tally":
            return tally(args.data_dir, args.election_id)
        elif args.cmd == "export-votes":
            return export_votes(args.data_dir, args.output)
        elif args.cmd == "aggregate":
            return aggregate(args.paths)
        elif args.cmd == "verify-audit":
            return verify_audit(args.audit_dir)
        else:
            p.print_help()
            return 1
    except LedgerError as e:
        logger.error("%s failed: %s", args.cmd, e.message)
        print(f"error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
