"""Smoke probe: idempotent replay of report sends.

Uses two report_send requests from the client's quota.

Env: REPORTING_BASE_URL, REPORTING_API_KEY, REPORTING_CLIENT_ID
"""
import os
import sys
import uuid
import requests

API_URL = os.getenv("REPORTING_BASE_URL", "http://localhost:8000").rstrip("/")
API_KEY = os.getenv("REPORTING_API_KEY", "")
CLIENT_ID = os.getenv("REPORTING_CLIENT_ID", "")


def send(token: str):
    return requests.post(
        f"{API_URL}/api/client/{CLIENT_ID}/report/send",
        headers={"x-api-key": API_KEY, "idempotency-key": token},
        timeout=30,
    )


def main():
    token = f"idem-probe-{uuid.uuid4()}"
    print(f"Testing idempotent replay with key {token}...")

    first = send(token)
    if first.status_code != 200:
        print(f"[FAILURE] First send failed: {first.status_code} {first.text}")
        sys.exit(1)
    first_data = first.json()["data"]
    print(f"First: replayed={first_data.get('replayed')}")

    second = send(token)
    if second.status_code != 200:
        print(f"[FAILURE] Replay failed: {second.status_code} {second.text}")
        sys.exit(1)
    second_data = second.json()["data"]
    print(f"Second: replayed={second_data.get('replayed')}")

    if first_data.get("replayed") is not False or second_data.get("replayed") is not True:
        print("[FAILURE] Expected replayed false then true")
        sys.exit(1)

    first_data.pop("replayed")
    second_data.pop("replayed")
    if first_data != second_data:
        print("[FAILURE] Replayed body differs from the original")
        sys.exit(1)

    print("[SUCCESS] Idempotent replay verified.")


if __name__ == "__main__":
    if not API_KEY or not CLIENT_ID:
        print("REPORTING_API_KEY and REPORTING_CLIENT_ID are required")
        sys.exit(2)
    main()
