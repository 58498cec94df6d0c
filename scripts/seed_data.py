"""
Seed Data Generator — fills browsing_history with 30 days of realistic visits
so the pattern matcher has something to learn from.

Run: python scripts/seed_data.py [--days 30] [--db path]
"""

import argparse
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attention_rescue.data.database import DEFAULT_DB_PATH, Database
from attention_rescue.data.models import HistoryEntry
from attention_rescue.data.repository import Repository
from attention_rescue.ml.features import analyze_navigation_pattern, categorize_url

PRODUCTIVE_SITES = [
    "https://github.com/org/repo/pulls",
    "https://stackoverflow.com/questions/12345",
    "https://docs.google.com/document/d/abc",
    "https://www.notion.so/workspace/page",
    "https://app.asana.com/0/board",
]
DISTRACTING_SITES = [
    "https://www.reddit.com/r/programming",
    "https://twitter.com/home",
    "https://www.youtube.com/watch?v=xyz",
    "https://news.ycombinator.com/",
    "https://www.instagram.com/explore",
]
NEUTRAL_SITES = [
    "https://en.wikipedia.org/wiki/Attention",
    "https://www.amazon.com/",
    "https://mail.example.com/inbox",
]


def _pick_site(hour: int) -> str:
    # Afternoon slump and evenings skew toward distraction
    distraction_odds = 0.6 if hour >= 14 else 0.3
    roll = random.random()
    if roll < distraction_odds:
        return random.choice(DISTRACTING_SITES)
    if roll < distraction_odds + 0.1:
        return random.choice(NEUTRAL_SITES)
    return random.choice(PRODUCTIVE_SITES)


def seed(days: int = 30, db_path: Path = DEFAULT_DB_PATH) -> int:
    db = Database(db_path)
    db.connect()
    repo = Repository(db.conn)

    base_date = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days)
    count = 0

    for day in range(days):
        date = base_date + timedelta(days=day)
        if date.weekday() >= 5 and random.random() < 0.6:
            continue  # most weekends off

        cursor = date + timedelta(hours=random.randint(8, 10), minutes=random.randint(0, 59))
        end_of_day = date + timedelta(hours=random.randint(17, 23))
        previous = []

        while cursor < end_of_day:
            url = _pick_site(cursor.hour)
            category = categorize_url(url)
            duration = random.uniform(2, 40) if category == "productivity" else random.uniform(1, 20)
            productive = category == "productivity"
            triggered = not productive and random.random() < 0.3

            previous = (previous + [url])[-5:]
            pattern = analyze_navigation_pattern(previous)

            repo.add_history(HistoryEntry(
                url=url,
                title=url.split("/")[2],
                start_time=cursor,
                end_time=cursor + timedelta(minutes=duration),
                duration_minutes=round(duration, 1),
                category=category,
                navigation_pattern=pattern,
                was_productive=productive,
                intervention_triggered=triggered,
                intervention_completed=triggered and random.random() < 0.5,
            ))
            count += 1
            cursor += timedelta(minutes=duration + random.uniform(0, 5))

    db.close()
    print(f"Seeded {count} history entries over {days} days into {db_path}.")
    return count


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed browsing history")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH)
    args = parser.parse_args()
    seed(args.days, args.db)
