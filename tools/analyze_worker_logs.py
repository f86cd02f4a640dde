import argparse
import json
import re
from collections import Counter
from collections.abc import Iterable


OUTCOME_RE = re.compile(r"'outcome'\s*:\s*'([^']+)'")
DELIVERIES_RE = re.compile(r"'deliveries'\s*:\s*(\d+)")


def percentile(values: list[int], p: float) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    idx = int((len(ordered) - 1) * p)
    return ordered[idx]


def summarize(lines: Iterable[str]) -> dict:
    payment_outcomes: Counter[str] = Counter()
    round_outcomes: Counter[str] = Counter()
    round_sizes: list[int] = []
    processed = 0

    for line in lines:
        outcome_match = OUTCOME_RE.search(line)
        if not outcome_match:
            continue
        if "payment job processed" in line:
            processed += 1
            payment_outcomes[outcome_match.group(1)] += 1
        elif "distribution round finished" in line:
            round_outcomes[outcome_match.group(1)] += 1
            size_match = DELIVERIES_RE.search(line)
            if size_match:
                round_sizes.append(int(size_match.group(1)))

    return {
        "processedPayments": processed,
        "paymentOutcomes": dict(payment_outcomes),
        "rounds": {
            "count": sum(round_outcomes.values()),
            "outcomes": dict(round_outcomes),
            "deliveriesP50": percentile(round_sizes, 0.50),
            "deliveriesMax": max(round_sizes) if round_sizes else 0,
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Summarize round and payment outcomes from adrotator logs")
    parser.add_argument("logfile", help="Path to adrotator log file")
    args = parser.parse_args()

    with open(args.logfile, "r", encoding="utf-8", errors="ignore") as fh:
        report = summarize(fh)
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
