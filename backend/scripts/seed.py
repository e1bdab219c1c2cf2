"""
Seed a database for load testing.

Creates N users, one contested event with a small capacity, and a digital
product that every user has bought. Writes bearer tokens and ids to a JSON
file that locust/locustfile.py reads.

    cd backend
    alembic upgrade head
    python -m scripts.seed --users 200 --capacity 10 --out locust/seed.json
"""

import argparse
import asyncio
import json
from datetime import datetime, timezone, timedelta
from decimal import Decimal

from storefront.core.config import get_settings
from storefront.core.logging import setup_logging, get_logger
from storefront.core.security import create_access_token
from storefront.db.session import AsyncSessionLocal, engine
from storefront.models import User, Event, DigitalProduct, Order, OrderItem
from storefront.models.order import ORDER_COMPLETED

logger = get_logger(__name__)


async def seed(users: int, capacity: int, download_limit: int, token_ttl: timedelta) -> dict:
    run = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")

    async with AsyncSessionLocal() as session:
        accounts = [
            User(email=f"load-{run}-{i}@example.com", username=f"load_{run}_{i}")
            for i in range(users)
        ]
        event = Event(
            title="Load Test Showcase",
            slug=f"load-test-showcase-{run}",
            price=Decimal("10.00"),
            event_date=datetime.now(timezone.utc) + timedelta(days=30),
            venue_name="Load Hall",
            venue_city="Testville",
            capacity=capacity,
            available_spots=capacity,
        )
        product = DigitalProduct(
            title="Load Test Bundle",
            slug=f"load-test-bundle-{run}",
            price=Decimal("5.00"),
            product_type="pdf",
            file_url="https://files.example.com/load-test-bundle.pdf",
            download_limit=download_limit,
        )
        session.add_all([*accounts, event, product])
        await session.flush()

        for user in accounts:
            order = Order(user_id=user.id, status=ORDER_COMPLETED, total_amount=product.price)
            session.add(order)
            await session.flush()
            session.add(
                OrderItem(order_id=order.id, digital_product_id=product.id, title=product.title, price=product.price)
            )
        await session.commit()

        data = {
            "event_id": event.id,
            "capacity": capacity,
            "product_id": product.id,
            "download_limit": download_limit,
            "tokens": [
                create_access_token({"sub": str(user.id)}, expires_delta=token_ttl)
                for user in accounts
            ],
        }

    await engine.dispose()
    logger.info(
        "seed_complete",
        users=users,
        event_id=data["event_id"],
        capacity=capacity,
        product_id=data["product_id"],
    )
    return data


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--users", type=int, default=100)
    parser.add_argument("--capacity", type=int, default=10)
    parser.add_argument("--download-limit", type=int, default=get_settings().DEFAULT_DOWNLOAD_LIMIT)
    parser.add_argument("--token-hours", type=int, default=2, help="lifetime of the bearer tokens")
    parser.add_argument("--out", default="locust/seed.json")
    args = parser.parse_args()

    setup_logging()
    data = asyncio.run(seed(args.users, args.capacity, args.download_limit, timedelta(hours=args.token_hours)))
    with open(args.out, "w") as fh:
        json.dump(data, fh, indent=2)
    print(f"Wrote {len(data['tokens'])} tokens to {args.out}")


if __name__ == "__main__":
    main()
