import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse
import collections
import concurrent.futures

import requests

BASE = os.environ.get("TIBERIO_BASE", "http://127.0.0.1:8000")
TOKEN = os.environ.get("TIBERIO_TOKEN", "dev-token")


def headers():
    return {"Content-Type": "application/json", "Authorization": f"Bearer {TOKEN}"}


def create_order(supplier_id, product_id, qty):
    payload = {
        "supplier_id": supplier_id,
        "description": "concurrency check",
        "items": [{"item_id": product_id, "qty": qty, "unit_price": 1}],
    }
    r = requests.post(f"{BASE}/api/orders", json=payload, headers=headers(), timeout=10)
    r.raise_for_status()
    order = r.json()
    return order["id"], order["items"][0]["id"]


def return_task(i, order_id, item_id, qty):
    payload = {"returned_quantity": qty, "refund_reason": f"concurrency worker {i}"}
    try:
        r = requests.patch(
            f"{BASE}/api/orders/{order_id}/items/{item_id}/return",
            json=payload,
            headers=headers(),
            timeout=20,
        )
        return (i, r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "ERR", str(e))


def stock_of(product_id):
    r = requests.get(f"{BASE}/api/products/{product_id}", headers=headers(), timeout=10)
    r.raise_for_status()
    return r.json()["stock"]


def run_return_concurrent(workers, supplier_id, product_id, qty, order_id=None, item_id=None):
    if order_id is None or item_id is None:
        order_id, item_id = create_order(supplier_id, product_id, qty)
    before = stock_of(product_id)
    print(f"Running return test: workers={workers}, order={order_id}, item={item_id}, stock={before}")

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [
            ex.submit(return_task, i, order_id, item_id, 1 + i % qty) for i in range(workers)
        ]
        results = [f.result() for f in futures]

    for r in results:
        print(r)
    codes = collections.Counter(r[1] for r in results)
    print("Status codes:", dict(codes))
    print(f"Stock {before} -> {stock_of(product_id)}")
    if codes.get(200) != 1:
        print("EXPECTED exactly one successful return")
        sys.exit(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Fire concurrent returns at one order item.")
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--supplier", type=int, default=1)
    parser.add_argument("--product", type=int, default=1)
    parser.add_argument("--qty", type=int, default=10, help="ordered quantity for the new order")
    parser.add_argument("--order", type=int, default=None, help="reuse an existing order")
    parser.add_argument("--item", type=int, default=None, help="reuse an existing order item")
    args = parser.parse_args()

    run_return_concurrent(args.workers, args.supplier, args.product, args.qty, args.order, args.item)
