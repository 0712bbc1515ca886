"""Smoke probe: admin key rotation against a live deployment.

Env: REPORTING_BASE_URL, REPORTING_ADMIN_SECRET, REPORTING_AGENCY_ID, REPORTING_API_KEY
"""
import os
import sys
import requests

# Configuration
API_URL = os.getenv("REPORTING_BASE_URL", "http://localhost:8000").rstrip("/")
ADMIN_SECRET = os.getenv("REPORTING_ADMIN_SECRET", "")
AGENCY_ID = os.getenv("REPORTING_AGENCY_ID", "")
OLD_KEY = os.getenv("REPORTING_API_KEY", "")


def check(label: str, condition: bool, detail: str = ""):
    if condition:
        print(f"✓ {label}")
    else:
        print(f"✗ {label} {detail}")
        sys.exit(1)


def test_rejects_bad_admin_secret():
    print("Testing admin auth...")
    resp = requests.post(
        f"{API_URL}/api/admin/agency/{AGENCY_ID}/rotate-key",
        headers={"x-admin-secret": "wrong-secret"},
        timeout=10,
    )
    check("Wrong admin secret -> 403 FORBIDDEN", resp.status_code == 403, resp.text)
    check("Error code FORBIDDEN", resp.json()["error"]["code"] == "FORBIDDEN")


def test_unknown_agency():
    resp = requests.post(
        f"{API_URL}/api/admin/agency/does-not-exist/rotate-key",
        headers={"x-admin-secret": ADMIN_SECRET},
        timeout=10,
    )
    check("Unknown agency -> 404 AGENCY_NOT_FOUND", resp.status_code == 404, resp.text)


def test_rotation_flow():
    print("Testing Rotation Flow...")
    if OLD_KEY:
        resp = requests.get(f"{API_URL}/api/clients", headers={"x-api-key": OLD_KEY}, timeout=10)
        check("Old key works before rotation", resp.status_code == 200, resp.text)

    resp = requests.post(
        f"{API_URL}/api/admin/agency/{AGENCY_ID}/rotate-key",
        headers={"x-admin-secret": ADMIN_SECRET},
        timeout=10,
    )
    check("Rotation -> 200", resp.status_code == 200, resp.text)
    new_key = resp.json()["data"]["newApiKey"]
    check("New key issued", new_key.startswith("rk_"))

    if OLD_KEY:
        resp = requests.get(f"{API_URL}/api/clients", headers={"x-api-key": OLD_KEY}, timeout=10)
        check("Old key rejected -> 401", resp.status_code == 401, resp.text)

    resp = requests.get(f"{API_URL}/api/clients", headers={"x-api-key": new_key}, timeout=10)
    check("New key accepted -> 200", resp.status_code == 200, resp.text)

    print("\nStore the new key now; it is not shown again.")
    print(f"REPORTING_API_KEY={new_key}")


if __name__ == "__main__":
    if not ADMIN_SECRET or not AGENCY_ID:
        print("REPORTING_ADMIN_SECRET and REPORTING_AGENCY_ID are required")
        sys.exit(2)
    test_rejects_bad_admin_secret()
    test_unknown_agency()
    test_rotation_flow()
    print("[SUCCESS] Key rotation verified.")
