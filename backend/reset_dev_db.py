#!/usr/bin/env python3
"""
Reset development database - creates fresh schema, seeds users and coins,
and prints a bearer token per user for poking at the API locally.
Run from the backend/ directory.
"""
import os
from pathlib import Path

backend_dir = Path(__file__).parent

DEV_USERS = [
    # (id, username, display_name, role)
    ("00000000-0000-4000-8000-000000000001", "alice", "Alice", "user"),
    ("00000000-0000-4000-8000-000000000002", "bob", "Bob", "user"),
    ("00000000-0000-4000-8000-000000000003", "carol", "Carol", "user"),
    ("00000000-0000-4000-8000-0000000000d0", "moderator", "Moderator", "moderator"),
    ("00000000-0000-4000-8000-0000000000e0", "admin", "Admin", "admin"),
]

DEV_COINS = [
    # (id, owner username, title, country, year, trade_status)
    ("10000000-0000-4000-8000-000000000001", "bob", "1921 Morgan Dollar", "USA", 1921, "open_to_trade"),
    ("10000000-0000-4000-8000-000000000002", "alice", "Challenge coin 82nd Airborne", "USA", 2004, "open_to_trade"),
    ("10000000-0000-4000-8000-000000000003", "bob", "Private collection piece", "UK", 1887, "not_for_trade"),
    ("10000000-0000-4000-8000-000000000004", "carol", "Navy anniversary coin", "USA", 2025, "open_to_trade"),
]


def seed_dev_data(db) -> dict:
    """Insert the dev users and coins that are missing. Returns username -> user id."""
    from coinswap import models

    ids = {}
    for user_id, username, display_name, role in DEV_USERS:
        existing = db.query(models.User).filter(models.User.username == username).first()
        if existing is None:
            existing = models.User(
                id=user_id,
                username=username,
                display_name=display_name,
                role=models.UserRole(role),
            )
            db.add(existing)
            print(f"  Created user: {username}")
        ids[username] = existing.id
    db.flush()

    for coin_id, owner, title, country, year, trade_status in DEV_COINS:
        if db.get(models.Coin, coin_id) is None:
            db.add(
                models.Coin(
                    id=coin_id,
                    owner_id=ids[owner],
                    title=title,
                    country=country,
                    year=year,
                    trade_status=models.CoinTradeStatus(trade_status),
                )
            )
    db.commit()
    return ids


def main():
    os.chdir(backend_dir)

    # Force load .env before importing coinswap modules
    from dotenv import load_dotenv

    load_dotenv(backend_dir / ".env", override=True)

    # Always target the local sqlite dev DB for this script.
    os.environ["DATABASE_URL"] = "sqlite:///./coinswap-dev.db"

    from coinswap.core.security import create_access_token_for_subject
    from coinswap.database import Base, SessionLocal, engine

    db_path = backend_dir / "coinswap-dev.db"
    if db_path.exists():
        print(f"Removing existing database: {db_path}")
        engine.dispose()
        db_path.unlink()

    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        print("Seeding users and coins...")
        ids = seed_dev_data(db)
    finally:
        db.close()

    print("\nBearer tokens (valid for the configured expiry):")
    for username, user_id in ids.items():
        print(f"  {username}: {create_access_token_for_subject(user_id)}")
    print(f"\nDatabase: {db_path}")


if __name__ == "__main__":
    main()
