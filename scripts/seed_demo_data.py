#!/usr/bin/env python3
"""
Seed demo data for the RFP workflow.

Run with backend up: docker compose up -d backend
  OR: uvicorn procureflow.main:app --reload (from backend dir)

Usage:
  python scripts/seed_demo_data.py
  python scripts/seed_demo_data.py --base http://localhost:8001

Creates: two demo vendors (reused if they already exist) and one RFP structured from free text.
Writes: scripts/demo_data.json with the created ids, and
        data/test_samples/sample_quote.pdf (one-page quote for attachment tests).
"""

import json
import os
import sys
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path

BASE_URL = os.environ.get("API_BASE", "http://localhost:8001").rstrip("/")

DEMO_VENDORS = [
    {"name": "TechSolutions Inc.", "email": "vendor.techsolutions@example.com", "company": "TechSolutions"},
    {"name": "Office Supply Co.", "email": "vendor.officesupply@example.com", "company": "OfficeSupply"},
]

DEMO_REQUEST = (
    "I need to procure laptops and monitors for our new office. Budget is $50,000 total. "
    "Need delivery within 30 days. We need 20 laptops with 16GB RAM and 15 monitors 27-inch. "
    "Payment terms should be net 30, and we need at least 1 year warranty."
)


def request(method: str, path: str, body: dict | None = None, ok_statuses: tuple[int, ...] = ()) -> dict | None:
    url = f"{BASE_URL}{path}"
    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"} if data else {},
    )
    try:
        with urllib.request.urlopen(req, timeout=120) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        if e.code in ok_statuses:
            return None
        err_body = e.read().decode("utf-8") if e.fp else ""
        raise SystemExit(f"HTTP {e.code} {path}: {err_body}")
    except urllib.error.URLError as e:
        raise SystemExit(f"Request failed (is the backend running at {BASE_URL}?): {e.reason}")


def ensure_vendors() -> list[dict]:
    for v in DEMO_VENDORS:
        if request("POST", "/vendors", body=v, ok_statuses=(409,)) is None:
            print(f"  Vendor exists: {v['email']}")
        else:
            print(f"  Vendor created: {v['email']}")
    wanted = {v["email"] for v in DEMO_VENDORS}
    return [v for v in request("GET", "/vendors") if v["email"] in wanted]


def create_sample_quote(out_path: Path, rfp_id: str) -> None:
    """Write a minimal one-page PDF quote whose figures differ slightly from the email body."""
    text = f"Quotation total: $48,500. Delivery 3 weeks. Warranty 2 years. RFP-ID: {rfp_id}".encode("latin-1")
    stream = b"BT\n/F1 10 Tf\n40 700 Td\n(" + text + b") Tj\nET"
    objects = [
        b"<<\n/Type /Catalog\n/Pages 2 0 R\n>>",
        b"<<\n/Type /Pages\n/Kids [3 0 R]\n/Count 1\n>>",
        b"<<\n/Type /Page\n/Parent 2 0 R\n/MediaBox [0 0 612 792]\n/Contents 4 0 R\n"
        b"/Resources <<\n/Font <<\n/F1 5 0 R\n>>\n>>\n>>",
        b"<<\n/Length " + str(len(stream)).encode() + b"\n>>\nstream\n" + stream + b"\nendstream",
        b"<<\n/Type /Font\n/Subtype /Type1\n/BaseFont /Helvetica\n>>",
    ]
    content = b"%PDF-1.4\n"
    offsets = []
    for n, obj in enumerate(objects, start=1):
        offsets.append(len(content))
        content += f"{n} 0 obj\n".encode() + obj + b"\nendobj\n"
    xref = len(content)
    content += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    content += b"".join(f"{o:010d} 00000 n \n".encode() for o in offsets)
    content += f"trailer\n<<\n/Size {len(objects) + 1}\n/Root 1 0 R\n>>\nstartxref\n{xref}\n%%EOF\n".encode()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(content)
    print(f"  Created: {out_path}")


def main() -> None:
    global BASE_URL
    if "--help" in sys.argv or "-h" in sys.argv:
        print(__doc__)
        sys.exit(0)
    for i, arg in enumerate(sys.argv):
        if arg == "--base" and i + 1 < len(sys.argv):
            BASE_URL = sys.argv[i + 1].rstrip("/")
            break

    print(f"Using API base: {BASE_URL}")
    print("Seeding demo data...")

    vendors = ensure_vendors()

    created = request("POST", "/rfps/create", body={"natural_language_input": DEMO_REQUEST})
    rfp = created["rfp"]
    items = created["structured_data"].get("required_items") or []
    print(f"  RFP created: id={rfp['id']} ({rfp['title'][:40]}...) with {len(items)} item(s)")

    script_dir = Path(__file__).resolve().parent
    manifest = {
        "base_url": BASE_URL,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "rfp": {"id": rfp["id"], "title": rfp["title"], "status": rfp["status"]},
        "vendors": [{"id": v["id"], "name": v["name"], "email": v["email"]} for v in vendors],
    }
    manifest_path = script_dir / "demo_data.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(f"  Manifest: {manifest_path}")

    sample_pdf = script_dir.parent / "data" / "test_samples" / "sample_quote.pdf"
    create_sample_quote(sample_pdf, rfp["id"])

    vendor_ids = ", ".join(f'"{v["id"]}"' for v in vendors)
    print("\nDone. Next:")
    print(f"  1. Send the RFP:  POST {BASE_URL}/rfps/send  {{\"rfp_id\": \"{rfp['id']}\", \"vendor_ids\": [{vendor_ids}]}}")
    print("  2. Simulate a vendor reply:")
    print(f"     curl -F 'from={DEMO_VENDORS[0]['email']}' \\")
    print(f"          -F 'text=Total price $48,000. Delivery in 14 days. Net 30. RFP-ID: {rfp['id']}' \\")
    print(f"          -F 'attachments=@{sample_pdf}' {BASE_URL}/inbound/proposal")
    print(f"  3. Compare:  GET {BASE_URL}/rfps/{rfp['id']}/compare")


if __name__ == "__main__":
    main()
