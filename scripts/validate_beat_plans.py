#!/usr/bin/env python3
"""
Integrity report for materialized beat plans.

Checks, per beat:
  - no two plans share (beat_id, plan_date)
  - every plan_date satisfies the rule it was expanded from
  - every plan belongs to an existing beat and carries at least one retailer

Plans record their own rule and start date in beat_data.schedule, so plans
kept from before a rule change are checked against the old rule. Plans
without one fall back to the beat's stored rule and start date, or to the
beat's first plan date.

Usage:
    python scripts/validate_beat_plans.py [--user-id USER]
Exit code is 1 when any error is found.
"""
import argparse
import sys
from collections import Counter, defaultdict

from shared.db_utils import get_db, fetchall, parse_date
from shared.recurrence import InvalidRuleError, rule_from_dict, rule_matches


def plan_matches_rule(rule, plan_date, start_date) -> bool:
    """Check one stored date against the rule, counting from start_date."""
    if plan_date < start_date:
        return False
    if not rule.is_permanent and plan_date > parse_date(rule.until):
        return False
    return rule_matches(rule, plan_date, start_date)


def _schedule_for(plan, beat, first_date):
    """(rule dict, start date) a plan should satisfy."""
    schedule = (plan.get("beat_data") or {}).get("schedule")
    if not schedule:
        schedule = beat["recurrence"]
    start = schedule.get("start_date")
    return schedule, parse_date(start) if start else first_date


def check(beats: dict, plans: list) -> int:
    errors = 0

    print("--- Referential Integrity ---")
    bad = sum(1 for p in plans if p["beat_id"] not in beats)
    print(f"  BeatPlans->beats: {bad} errors"); errors += bad

    bad = sum(1 for p in plans if not (p.get("beat_data") or {}).get("retailer_ids"))
    print(f"  BeatPlans without retailers: {bad} errors"); errors += bad

    print("\n--- Uniqueness ---")
    counts = Counter((p["beat_id"], str(p["plan_date"])) for p in plans)
    dups = sum(n - 1 for n in counts.values() if n > 1)
    print(f"  (beat_id, plan_date): {dups} duplicates"); errors += dups

    print("\n--- Recurrence Rules ---")
    by_beat = defaultdict(list)
    for p in plans:
        by_beat[p["beat_id"]].append(p)

    for beat_id, beat_plans in sorted(by_beat.items()):
        beat = beats.get(beat_id)
        if not beat or not beat.get("recurrence"):
            continue
        first_date = min(parse_date(p["plan_date"]) for p in beat_plans)
        off_rule = []
        for p in beat_plans:
            schedule, start = _schedule_for(p, beat, first_date)
            try:
                rule = rule_from_dict(schedule)
            except InvalidRuleError as e:
                print(f"  {beat['beat_name']}: invalid rule on {p['plan_date']} ({e})"); errors += 1
                continue
            plan_date = parse_date(p["plan_date"])
            if not plan_matches_rule(rule, plan_date, start):
                off_rule.append(plan_date)
        if off_rule:
            off_rule.sort()
            print(f"  {beat['beat_name']}: {len(off_rule)} plan(s) off-rule, first {off_rule[0]}")
            errors += len(off_rule)
    print(f"  Beats checked: {len(by_beat)}")

    return errors


def main():
    parser = argparse.ArgumentParser(description="Validate materialized beat plans")
    parser.add_argument("--user-id", help="Only check this user's beats")
    args = parser.parse_args()

    conn = get_db()
    try:
        if args.user_id:
            beat_rows = fetchall(conn, "SELECT id, beat_name, recurrence FROM beats WHERE created_by = %s",
                                 (args.user_id,))
            plans = fetchall(conn, "SELECT beat_id, plan_date, beat_data FROM beat_plans WHERE user_id = %s",
                             (args.user_id,))
        else:
            beat_rows = fetchall(conn, "SELECT id, beat_name, recurrence FROM beats")
            plans = fetchall(conn, "SELECT beat_id, plan_date, beat_data FROM beat_plans")
    finally:
        conn.close()

    print("=== Beat Plan Validation Report ===\n")
    beats = {r["id"]: dict(r) for r in beat_rows}
    errors = check(beats, [dict(p) for p in plans])

    print(f"\n=== TOTAL ERRORS: {errors} ===")
    sys.exit(1 if errors else 0)


if __name__ == "__main__":
    main()
