"""
Reference Schema
================

Multi-tenant sales schema used by the demo store and the test suite, and the
schema description handed to the language model.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS "Venue" (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    currency TEXT NOT NULL DEFAULT 'USD'
);
CREATE TABLE IF NOT EXISTS "Order" (
    id TEXT PRIMARY KEY,
    venueId TEXT NOT NULL REFERENCES "Venue"(id),
    total REAL NOT NULL,
    status TEXT NOT NULL,
    createdAt TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS "Payment" (
    id TEXT PRIMARY KEY,
    venueId TEXT NOT NULL REFERENCES "Venue"(id),
    orderId TEXT NOT NULL REFERENCES "Order"(id),
    amount REAL NOT NULL,
    tipAmount REAL NOT NULL DEFAULT 0,
    method TEXT NOT NULL DEFAULT 'CARD',
    status TEXT NOT NULL,
    createdAt TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS "Product" (
    id TEXT PRIMARY KEY,
    venueId TEXT NOT NULL REFERENCES "Venue"(id),
    name TEXT NOT NULL,
    price REAL NOT NULL,
    categoryName TEXT
);
CREATE TABLE IF NOT EXISTS "OrderItem" (
    id TEXT PRIMARY KEY,
    venueId TEXT NOT NULL REFERENCES "Venue"(id),
    orderId TEXT NOT NULL REFERENCES "Order"(id),
    productId TEXT NOT NULL REFERENCES "Product"(id),
    quantity INTEGER NOT NULL,
    unitPrice REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS "Review" (
    id TEXT PRIMARY KEY,
    venueId TEXT NOT NULL REFERENCES "Venue"(id),
    overallRating INTEGER NOT NULL,
    comment TEXT,
    responseText TEXT,
    createdAt TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_order_venue_created ON "Order"(venueId, createdAt);
CREATE INDEX IF NOT EXISTS idx_payment_venue_created ON "Payment"(venueId, createdAt);
CREATE INDEX IF NOT EXISTS idx_review_venue_created ON "Review"(venueId, createdAt);
"""

TENANT_COLUMN = "venueId"

SCHEMA_CONTEXT = """Tables (SQLite, quote table names with double quotes):
- "Venue"(id, name, timezone, currency)
- "Order"(id, venueId, total, status, createdAt)  status: COMPLETED | CANCELLED | PENDING
- "Payment"(id, venueId, orderId, amount, tipAmount, method, status, createdAt)  method: CASH | CARD
- "Product"(id, venueId, name, price, categoryName)
- "OrderItem"(id, venueId, orderId, productId, quantity, unitPrice)
- "Review"(id, venueId, overallRating, comment, responseText, createdAt)  overallRating: 1-5
Timestamps are ISO-8601 UTC text. Every table is scoped by venueId."""

DEMO_PRODUCTS = [
    ("Hamburguesa Clásica", 120.0, "Comida"),
    ("Pizza Margarita", 180.0, "Comida"),
    ("Tacos al Pastor", 90.0, "Comida"),
    ("Limonada", 40.0, "Bebidas"),
    ("Café Americano", 35.0, "Bebidas"),
]


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_DDL)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def seed_demo_data(
    conn: sqlite3.Connection,
    venues: tuple[str, ...] = ("venue-001", "venue-002"),
    days: int = 30,
    now: datetime | None = None,
) -> None:
    """
    Populate the reference schema with deterministic demo data.

    Each venue gets one product catalogue and a few orders per day for the
    last ``days`` days. Order volume scales with the venue's position so the
    tenants produce distinguishable totals.
    """
    create_schema(conn)
    now = now or datetime.now(timezone.utc)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    for v_index, venue_id in enumerate(venues, start=1):
        conn.execute(
            'INSERT OR REPLACE INTO "Venue" (id, name, timezone, currency) VALUES (?, ?, ?, ?)',
            (venue_id, f"Demo Venue {v_index}", "UTC", "USD"),
        )
        product_ids = []
        for p_index, (name, price, category) in enumerate(DEMO_PRODUCTS, start=1):
            product_id = f"{venue_id}-p{p_index}"
            product_ids.append((product_id, price))
            conn.execute(
                'INSERT OR REPLACE INTO "Product" (id, venueId, name, price, categoryName) '
                "VALUES (?, ?, ?, ?, ?)",
                (product_id, venue_id, name, price, category),
            )

        for day in range(days):
            day_start = today - timedelta(days=day)
            for o_index in range(2 + v_index):
                order_id = f"{venue_id}-d{day}-o{o_index}"
                created = day_start + timedelta(hours=12 + o_index * 3)
                if created > now:
                    created = day_start
                product_id, price = product_ids[(day + o_index) % len(product_ids)]
                quantity = 1 + (o_index % 3)
                total = price * quantity
                conn.execute(
                    'INSERT OR REPLACE INTO "Order" (id, venueId, total, status, createdAt) '
                    "VALUES (?, ?, ?, 'COMPLETED', ?)",
                    (order_id, venue_id, total, _iso(created)),
                )
                conn.execute(
                    'INSERT OR REPLACE INTO "OrderItem" '
                    "(id, venueId, orderId, productId, quantity, unitPrice) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (f"{order_id}-i0", venue_id, order_id, product_id, quantity, price),
                )
                conn.execute(
                    'INSERT OR REPLACE INTO "Payment" '
                    "(id, venueId, orderId, amount, tipAmount, method, status, createdAt) "
                    "VALUES (?, ?, ?, ?, ?, ?, 'COMPLETED', ?)",
                    (
                        f"{order_id}-pay",
                        venue_id,
                        order_id,
                        total,
                        round(total * 0.1, 2),
                        "CASH" if o_index % 2 else "CARD",
                        _iso(created),
                    ),
                )
            if day % 3 == 0:
                conn.execute(
                    'INSERT OR REPLACE INTO "Review" '
                    "(id, venueId, overallRating, comment, responseText, createdAt) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        f"{venue_id}-r{day}",
                        venue_id,
                        5 - (day // 3) % 4,
                        "Demo review",
                        None if day % 2 else "Gracias",
                        _iso(day_start + timedelta(hours=20)),
                    ),
                )
