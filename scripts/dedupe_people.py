#!/usr/bin/env python3
"""
Deduplicate person records.

Finds records that refer to the same individual, merges them into one
canonical record, and rewrites every reference (document links, connections,
timeline events) to point at the survivor. Merged ids are kept in
merged_person_ids so old links redirect instead of breaking.

Usage:
    python scripts/dedupe_people.py --dry-run                 # write a plan, change nothing
    python scripts/dedupe_people.py --execute-plan            # run the pending plan actions
    python scripts/dedupe_people.py --run                     # cluster + merge until nothing merges
    python scripts/dedupe_people.py --primary 12 --secondary 40 41 [--execute]
    python scripts/dedupe_people.py --search "Jeff Epstein"
    python scripts/dedupe_people.py --list-ambiguous
"""
import sys
import signal
import logging
import argparse
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.dedup_job import DedupJob
from api.services.merge_policy import plan_merge
from api.services.person_cache import PersonCache
from api.services.person_lookup import find_persons_by_name
from api.services.person_merger import merge_person_ids
from api.services.person_store import PersonStore
from api.services.resolution_errors import ConcurrencyConflict, DedupCancelled
from api.services.review_queue import ReviewQueueStore
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def install_sigint_handler(cancel_event: threading.Event):
    """First Ctrl+C asks the job to stop at the next checkpoint; progress is kept."""
    def _handler(signum, frame):
        logger.warning("SIGINT received, stopping after the current cluster...")
        cancel_event.set()
    return signal.signal(signal.SIGINT, _handler)


def search(store: PersonStore, query: str) -> list:
    """Search for people by name, using the dedup matcher."""
    hits = find_persons_by_name(query, PersonCache(store), limit=50)
    print(f"\nFound {len(hits)} matches for '{query}':\n")
    for hit in hits:
        p = hit.record
        print(f"  ID: {p.id}")
        print(f"  Name: {p.display_name}")
        print(f"  Aliases: {p.aliases}")
        print(f"  Category/Role: {p.category} / {p.role}")
        print(f"  Documents: {p.document_count}, Connections: {p.connection_count}")
        print(f"  Match rule: {hit.rule}")
        print()
    return hits


def list_ambiguous(queue: ReviewQueueStore) -> list:
    """Print ambiguous clusters awaiting review."""
    items = queue.get_pending(limit=500)
    print(f"\nFound {len(items)} ambiguous cluster(s) awaiting review:\n")
    for i, item in enumerate(items, 1):
        print(f"{i}. {item.reason} (review id {item.id[:8]})")
        for pid in item.member_ids:
            print(f"   - {item.member_names.get(pid, '?')} (ID: {pid})")
        print(f"   non-matching pairs: {item.missing_pairs}")
        print()
    return items


def manual_merge(store: PersonStore, primary_id: int, secondary_ids: list[int], execute: bool = False) -> dict:
    """
    Merge secondaries into primary, chosen by a curator.

    Without execute, only shows what the merge would produce.
    """
    members = store.get_many([primary_id, *secondary_ids])
    missing = [pid for pid in [primary_id, *secondary_ids] if pid not in members]
    if missing:
        logger.error(f"Person(s) not found: {missing}")
        return {"merged": False, "missing": missing}

    plan = plan_merge(list(members.values()), canonical_id=primary_id)
    logger.info(f"Primary:    {members[primary_id].display_name} (ID: {primary_id})")
    for pid in plan.removed_ids:
        logger.info(f"Secondary:  {members[pid].display_name} (ID: {pid})")
    logger.info(f"Aliases after merge: {plan.aliases}")

    if not execute:
        logger.info("\nDRY RUN - no changes made. Use --execute to apply.")
        return {"merged": False, "aliases": plan.aliases}

    try:
        result = merge_person_ids(store, primary_id, secondary_ids)
    except ConcurrencyConflict as e:
        logger.error(f"Merge aborted: {e}")
        return {"merged": False, "error": str(e)}

    ReviewQueueStore(store.db_path).mark_stale_for_persons([primary_id, *result.removed_ids])
    logger.info(f"Merged {result.removed_ids} into {result.canonical_id}")
    return {"merged": True, **result.to_dict()}


def main(argv=None):
    parser = argparse.ArgumentParser(description='Deduplicate person records')
    parser.add_argument('--db', type=Path, default=None, help=f'Database path (default {settings.db_path})')
    parser.add_argument('--plan', type=Path, default=None, help=f'Plan file (default {settings.plan_path})')
    parser.add_argument('--dry-run', action='store_true', help='Write a dedup plan without changing anything')
    parser.add_argument('--execute-plan', action='store_true', help='Execute pending actions of a saved plan')
    parser.add_argument('--run', action='store_true', help='Cluster and merge until nothing more merges')
    parser.add_argument('--primary', type=int, help='ID of the person to keep')
    parser.add_argument('--secondary', type=int, nargs='+', help='ID(s) of the person(s) to merge into primary')
    parser.add_argument('--execute', action='store_true', help='Actually apply a manual merge')
    parser.add_argument('--search', help='Search for people by name')
    parser.add_argument('--list-ambiguous', action='store_true', help='List ambiguous clusters awaiting review')
    args = parser.parse_args(argv)

    store = PersonStore(args.db)

    if args.search:
        search(store, args.search)
        return 0

    if args.list_ambiguous:
        list_ambiguous(ReviewQueueStore(store.db_path))
        return 0

    if args.primary is not None or args.secondary:
        if args.primary is None or not args.secondary:
            parser.error('--primary and --secondary must be given together')
        result = manual_merge(store, args.primary, args.secondary, execute=args.execute)
        return 0 if result.get("merged") or not args.execute else 1

    if not (args.dry_run or args.execute_plan or args.run):
        parser.print_help()
        print("\nExamples:")
        print("  python scripts/dedupe_people.py --dry-run")
        print("  python scripts/dedupe_people.py --execute-plan")
        print("  python scripts/dedupe_people.py --search 'Epstein'")
        print("  python scripts/dedupe_people.py --primary 12 --secondary 40 41 --execute")
        return 0

    cancel_event = threading.Event()
    job = DedupJob(store, cancel_event=cancel_event)

    previous = install_sigint_handler(cancel_event)
    try:
        if args.dry_run:
            plan = job.plan(args.plan)
            if plan["cancelled"]:
                logger.warning("Cancelled, no plan written")
                return 130
            summary = plan["summary"]
            print(f"\nPlan: {summary['totalActions']} merge(s), "
                  f"{summary['ambiguousClusters']} ambiguous cluster(s)")
            print(f"Written to {args.plan or settings.plan_path}")
            print("Review it, then run with --execute-plan.")
            return 0
        if args.execute_plan:
            report = job.execute_plan(args.plan)
        else:
            report = job.run()
    except DedupCancelled:
        logger.warning("Cancelled")
        return 130
    finally:
        signal.signal(signal.SIGINT, previous)

    stats = report.to_dict()
    logger.info(
        f"Merged {stats['merged_clusters']} cluster(s), removed {stats['removed_records']} record(s), "
        f"skipped {len(stats['skipped'])}, failed {len(stats['failed'])}"
    )
    return 130 if report.cancelled else 0


if __name__ == '__main__':
    sys.exit(main())
