"""Smoke probe: report_send rate limit and headers.

Consumes the client's whole report_send quota for the current window.

Env: REPORTING_BASE_URL, REPORTING_API_KEY, REPORTING_CLIENT_ID
"""
import os
import sys
import uuid
import requests

API_URL = os.getenv("REPORTING_BASE_URL", "http://localhost:8000").rstrip("/")
API_KEY = os.getenv("REPORTING_API_KEY", "")
CLIENT_ID = os.getenv("REPORTING_CLIENT_ID", "")
LIMIT = int(os.getenv("REPORTING_REPORT_SEND_LIMIT", "10"))


def main():
    print("Testing report_send rate limiting...")
    url = f"{API_URL}/api/client/{CLIENT_ID}/report/send"
    last_remaining = None

    for i in range(1, LIMIT + 2):
        resp = requests.post(
            url,
            headers={"x-api-key": API_KEY, "idempotency-key": f"rl-probe-{uuid.uuid4()}"},
            timeout=30,
        )
        remaining = resp.headers.get("X-RateLimit-Remaining")
        status = "ALLOWED" if resp.status_code == 200 else f"DENIED ({resp.status_code})"
        print(f"Request {i}: {status} (Rem: {remaining}, Reset: {resp.headers.get('X-RateLimit-Reset')})")

        for header in ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"):
            if header not in resp.headers:
                print(f"[FAILURE] Missing {header}")
                sys.exit(1)

        if i <= LIMIT:
            if resp.status_code != 200:
                print(f"[FAILURE] Should be allowed: {resp.text}")
                sys.exit(1)
            if last_remaining is not None and int(remaining) != last_remaining - 1:
                print("[FAILURE] Remaining did not decrease by one")
                sys.exit(1)
            last_remaining = int(remaining)
        else:
            if resp.status_code != 429 or resp.json()["error"]["code"] != "RATE_LIMIT_EXCEEDED":
                print(f"[FAILURE] Should be denied: {resp.status_code} {resp.text}")
                sys.exit(1)
            if int(remaining) != 0:
                print("[FAILURE] Remaining should be 0 when denied")
                sys.exit(1)

    print("[SUCCESS] Rate limiting verified.")


if __name__ == "__main__":
    if not API_KEY or not CLIENT_ID:
        print("REPORTING_API_KEY and REPORTING_CLIENT_ID are required")
        sys.exit(2)
    main()
