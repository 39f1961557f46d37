"""
Holding Window Simulation Script

Drives a running API through a busy service: many tables add items,
send their orders, keep editing inside the holding window, and servers
force some items out early while the sweeper dispatches the rest.
Run from project root: python scripts/simulate.py
"""

import asyncio
import sys
import os
import random
import time
import argparse
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20

MENU_ITEMS = [
    {"menu_item_id": "pizza-margherita", "unit_price": "14.99"},
    {"menu_item_id": "pepperoni-pizza", "unit_price": "16.99"},
    {"menu_item_id": "caesar-salad", "unit_price": "8.99"},
    {"menu_item_id": "garlic-bread", "unit_price": "5.99"},
    {"menu_item_id": "pasta-carbonara", "unit_price": "13.99"},
    {"menu_item_id": "tiramisu", "unit_price": "7.99"},
    {"menu_item_id": "negroni", "unit_price": "11.00"},
    {"menu_item_id": "sparkling-water", "unit_price": "3.49"},
]
INSTRUCTIONS = [None, "No onions", "Extra cheese", "Allergy: nuts", "Well done", "On the side"]


def generate_item_payload(order_id: str, delay_seconds: int) -> dict[str, Any]:
    """Generate a random item for an order."""
    item = random.choice(MENU_ITEMS)
    return {
        "order_id": order_id,
        "menu_item_id": item["menu_item_id"],
        "unit_price": item["unit_price"],
        "quantity": random.randint(1, 3),
        "special_instructions": random.choice(INSTRUCTIONS),
        "delay_seconds": delay_seconds,
    }


async def run_table(
    client: httpx.AsyncClient,
    order_num: int,
    delay_seconds: int,
) -> dict[str, Any]:
    """Add items, send, then edit or force-send inside the holding window."""
    order_id = f"sim-{int(time.time())}-{order_num}"
    edits = 0
    forced = 0

    try:
        item_ids = []
        for _ in range(random.randint(1, 4)):
            response = await client.post(
                f"{API_BASE_URL}/api/order-items",
                json=generate_item_payload(order_id, delay_seconds),
            )
            response.raise_for_status()
            item_ids.append(response.json()["id"])

        response = await client.post(f"{API_BASE_URL}/api/orders/{order_id}/send")
        response.raise_for_status()

        await asyncio.sleep(random.uniform(0, delay_seconds * 0.8))

        for item_id in item_ids:
            roll = random.random()
            if roll < 0.3:
                response = await client.patch(
                    f"{API_BASE_URL}/api/order-items/{item_id}",
                    json={"quantity": random.randint(1, 4)},
                )
                # 409 means the sweeper dispatched it first
                if response.status_code == 200:
                    edits += 1
            elif roll < 0.45:
                response = await client.post(f"{API_BASE_URL}/api/order-items/{item_id}/send-now")
                response.raise_for_status()
                forced += 1

        return {
            "order_id": order_id,
            "success": True,
            "items": len(item_ids),
            "edits": edits,
            "forced": forced,
        }
    except Exception as e:
        return {
            "order_id": order_id,
            "success": False,
            "error": str(e)[:100],
        }


async def wait_for_dispatch(client: httpx.AsyncClient, timeout: float) -> dict[str, int]:
    """Poll until nothing is pending, or the timeout passes."""
    deadline = time.time() + timeout
    counts: dict[str, int] = {}
    while time.time() < deadline:
        response = await client.get(f"{API_BASE_URL}/api/order-items")
        response.raise_for_status()
        counts = {}
        for item in response.json()["items"]:
            counts[item["state"]] = counts.get(item["state"], 0) + 1
        if not counts.get("pending"):
            break
        await asyncio.sleep(1)
    return counts


async def main(total_orders: int, delay_seconds: int) -> None:
    print("=" * 60)
    print("🍽️  HOLDING WINDOW SIMULATION")
    print("=" * 60)
    print(f"   Orders: {total_orders}")
    print(f"   Delay: {delay_seconds}s")
    print(f"   Target: {API_BASE_URL}")
    print("=" * 60)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30.0) as client:
        results = await asyncio.gather(*[
            run_table(client, n, delay_seconds) for n in range(1, total_orders + 1)
        ])

        ok = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print(f"\n📋 Tables: {len(ok)} ok, {len(failed)} failed")
        print(f"   Items: {sum(r['items'] for r in ok)}")
        print(f"   Edits in window: {sum(r['edits'] for r in ok)}")
        print(f"   Forced sends: {sum(r['forced'] for r in ok)}")
        for r in failed[:5]:
            print(f"   ❌ {r['order_id']}: {r['error']}")

        print("\n⏳ Waiting for the sweeper...")
        counts = await wait_for_dispatch(client, timeout=delay_seconds * 3 + 10)

    elapsed = round(time.time() - start_time, 1)
    print(f"\n📊 Item states after {elapsed}s: {counts}")
    if counts.get("pending"):
        print("⚠️ Items still pending past their timer")
    else:
        print("✅ Every sent item was dispatched")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Holding window simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of tables")
    parser.add_argument("--delay", type=int, default=5, help="Holding window in seconds")
    args = parser.parse_args()

    asyncio.run(main(args.orders, args.delay))
