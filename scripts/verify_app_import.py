import sys
import os
sys.path.append(os.getcwd())

EXPECTED_ROUTES = {
    ("GET", "/api/health"),
    ("POST", "/api/agency/register"),
    ("GET", "/api/clients"),
    ("POST", "/api/client/{client_id}/report/send"),
    ("POST", "/api/reports/{client_id}/{filename}/signed-url"),
    ("GET", "/reports/{agency_id}/{client_id}/{filename}"),
    ("POST", "/api/admin/agency/{agency_id}/rotate-key"),
}

try:
    from reporting_api.main import app
    print("✅ Application imported successfully")

    # Verify RequestIdMiddleware is present
    found = False
    for middleware in app.user_middleware:
        if middleware.cls.__name__ == "RequestIdMiddleware":
            found = True
            break

    if found:
        print("✅ RequestIdMiddleware registered")
    else:
        print("❌ RequestIdMiddleware NOT found in middleware stack")
        sys.exit(1)

    registered = set()
    for route in app.routes:
        for method in getattr(route, "methods", None) or ():
            registered.add((method, route.path))

    missing = EXPECTED_ROUTES - registered
    if missing:
        print(f"❌ Missing routes: {sorted(missing)}")
        sys.exit(1)
    print(f"✅ {len(EXPECTED_ROUTES)} core routes registered")

except Exception as e:
    print(f"❌ Import failed: {e}")
    sys.exit(1)
