from __future__ import annotations

import sys

from croissant_tour.db.session import SessionLocal
from croissant_tour.services.ratings import RatingService


def main() -> int:
    if len(sys.argv) > 2:
        print("Usage: python scripts/show_ratings.py [user_id]")
        return 2
    only_user = sys.argv[1] if len(sys.argv) == 2 else None

    db = SessionLocal()
    try:
        service = RatingService(db)
        rows = [r for r in service.get_all_user_ratings() if only_user is None or r.user_id == only_user]
        if not rows:
            print("No users found")
            return 1

        last_user = None
        for row in rows:
            user = row.user_id if row.user_id != last_user else ""
            last_user = row.user_id
            if row.place_id is None:
                print(f"{user:<36}  (no ratings)")
                continue
            voted_at = row.created_at.strftime("%Y-%m-%d %H:%M") if row.created_at else ""
            print(f"{user:<36}  place={row.place_id:<4} score={row.score}  {voted_at}")

        print()
        for stat in service.get_global_stats():
            print(f"place={stat.place_id:<4} avg={stat.average_score:.2f} ratings={stat.rating_count}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
