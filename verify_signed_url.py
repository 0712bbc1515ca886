"""Smoke probe: signed report URLs.

Sends one report to produce an artifact, then checks access with a valid,
tampered and re-pathed token.

Env: REPORTING_BASE_URL, REPORTING_API_KEY, REPORTING_CLIENT_ID
"""
import os
import sys
import requests

API_URL = os.getenv("REPORTING_BASE_URL", "http://localhost:8000").rstrip("/")
API_KEY = os.getenv("REPORTING_API_KEY", "")
CLIENT_ID = os.getenv("REPORTING_CLIENT_ID", "")


def check(label: str, condition: bool, detail: str = ""):
    if condition:
        print(f"✓ {label}")
    else:
        print(f"✗ {label} {detail}")
        sys.exit(1)


def main():
    headers = {"x-api-key": API_KEY}

    resp = requests.post(f"{API_URL}/api/client/{CLIENT_ID}/report/send", headers=headers, timeout=30)
    check("Report sent", resp.status_code == 200, resp.text)
    filename = resp.json()["data"]["pdfKey"].rsplit("/", 1)[-1]

    resp = requests.post(
        f"{API_URL}/api/reports/{CLIENT_ID}/{filename}/signed-url",
        headers=headers,
        params={"ttl": 300},
        timeout=10,
    )
    check("Signed URL minted", resp.status_code == 200, resp.text)
    data = resp.json()["data"]
    url = data["url"]
    print(f"  expiresAt={data['expiresAt']} ttl={data['ttl']}")

    resp = requests.get(url, timeout=30)
    check("Valid token -> 200 application/pdf",
          resp.status_code == 200 and resp.headers.get("content-type", "").startswith("application/pdf"),
          resp.text[:200])

    base, token = url.split("?token=")
    tampered = token[:-1] + ("A" if token[-1] != "A" else "B")
    resp = requests.get(f"{base}?token={tampered}", timeout=10)
    check("Tampered token -> 403 PDF_TOKEN_INVALID",
          resp.status_code == 403 and resp.json()["error"]["code"] == "PDF_TOKEN_INVALID", resp.text)

    other = base.rsplit("/", 1)[0] + "/other-report.pdf"
    resp = requests.get(f"{other}?token={token}", timeout=10)
    check("Token on another path -> 403 PDF_TOKEN_MISMATCH",
          resp.status_code == 403 and resp.json()["error"]["code"] == "PDF_TOKEN_MISMATCH", resp.text)

    resp = requests.get(base, timeout=10)
    check("No token -> 401 PDF_TOKEN_REQUIRED", resp.status_code == 401, resp.text)

    print("[SUCCESS] Signed URLs verified.")


if __name__ == "__main__":
    if not API_KEY or not CLIENT_ID:
        print("REPORTING_API_KEY and REPORTING_CLIENT_ID are required")
        sys.exit(2)
    main()
