"""
Order Item Verification Script

Checks the lifecycle invariants of every item the API knows about.
Run from project root: python scripts/verify.py
"""

import os
import sys
from datetime import datetime, timezone

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8001")
LOCKED_STATES = {"dispatched", "completed"}


def _parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00")) if value else None


def check_item(item: dict, now: datetime) -> list[str]:
    """Return the invariant violations for one item."""
    problems = []
    state = item["state"]

    if item["locked"] != (state in LOCKED_STATES):
        problems.append(f"locked={item['locked']} in state {state}")
    if item["expiry_at"] and state != "pending":
        problems.append(f"expiry_at set in state {state}")
    if state == "pending" and not item["expiry_at"]:
        problems.append("pending without expiry_at")
    if state in LOCKED_STATES and not item["dispatched_at"]:
        problems.append(f"{state} without dispatched_at")
    if state == "completed" and not item["completed_at"]:
        problems.append("completed without completed_at")
    if item["quantity"] < 1:
        problems.append(f"quantity {item['quantity']}")
    if float(item["unit_price"]) < 0:
        problems.append(f"unit_price {item['unit_price']}")

    expiry = _parse(item["expiry_at"])
    if state == "pending" and expiry and (now - expiry).total_seconds() > 10:
        problems.append(f"pending {int((now - expiry).total_seconds())}s past its timer")

    return problems


def verify_items():
    """Verify every item against the lifecycle invariants."""

    print("=" * 60)
    print("🔍 ORDER ITEM VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🌐 API: {API_BASE_URL}")
    print("=" * 60)

    try:
        response = httpx.get(f"{API_BASE_URL}/api/order-items", timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"\n❌ Could not reach the API: {e}")
        return False

    items = response.json()["items"]
    now = datetime.now(timezone.utc)

    counts: dict[str, int] = {}
    violations = []
    for item in items:
        counts[item["state"]] = counts.get(item["state"], 0) + 1
        for problem in check_item(item, now):
            violations.append((item["id"], problem))

    print(f"\n📊 STATISTICS:")
    print(f"   Total Items: {len(items)}")
    for state, count in sorted(counts.items()):
        print(f"   {state}: {count}")

    if violations:
        print(f"\n⚠️ {len(violations)} invariant violation(s):")
        for item_id, problem in violations[:20]:
            print(f"   {item_id}: {problem}")
    else:
        print(f"\n✅ All items satisfy the lifecycle invariants")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE")
    print("=" * 60)

    return not violations


if __name__ == "__main__":
    verify_items()
