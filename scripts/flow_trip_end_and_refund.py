#!/usr/bin/env python3
"""
Trip end and refund flow script.

Only orchestrates API calls against a running server; every settlement
rule lives in the backend.

Usage:
    python scripts/flow_trip_end_and_refund.py --booking-id <UUID> --guest-id <UUID> --end-mileage 10450 --fuel-level 1/2
    python scripts/flow_trip_end_and_refund.py --booking-id <UUID> --guest-id <UUID> --end-mileage 10450 --fuel-level Full --refund 5000 --reverse-transfer

Flow:
    1. Check the trip can be ended (guest)
    2. End the trip and settle charges (guest)
    3. Show charge history
    4. Request a refund (staff when --reverse-transfer, otherwise guest)
    5. Approve and process the refund (staff)
    6. Verify the audit log
"""

import argparse
import json
import sys

import httpx

BASE_URL = "http://localhost:8000"
STAFF_ID = "ops-script"


def actor_headers(actor_id: str, role: str) -> dict:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


def api_request(headers: dict, method: str, endpoint: str, data: dict | None = None) -> dict:
    url = f"{BASE_URL}{endpoint}"

    if method == "GET":
        response = httpx.get(url, headers=headers, timeout=30.0, follow_redirects=True)
    elif method == "POST":
        response = httpx.post(url, headers=headers, json=data or {}, timeout=30.0, follow_redirects=True)
    else:
        raise ValueError(f"Unknown method: {method}")

    return {"status": response.status_code, "data": response.json() if response.text else {}}


def print_step(step: int, title: str):
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_result(result: dict, fields: list[str] | None = None):
    """Print result, optionally filtering fields. Returns False on error."""
    if result["status"] >= 400:
        print(f"ERROR ({result['status']}): {json.dumps(result['data'], indent=2)}")
        return False

    print(f"Status: {result['status']}")
    if fields:
        filtered = {k: result["data"].get(k) for k in fields if k in result["data"]}
        print(json.dumps(filtered, indent=2))
    else:
        print(json.dumps(result["data"], indent=2))
    return True


def main():
    parser = argparse.ArgumentParser(description="Trip end and refund flow")
    parser.add_argument("--booking-id", required=True, help="Booking UUID")
    parser.add_argument("--guest-id", required=True, help="Guest UUID of the booking")
    parser.add_argument("--end-mileage", type=int, required=True, help="Odometer reading at return")
    parser.add_argument("--fuel-level", required=True, help="Fuel gauge at return (Full, 3/4, 1/2, 1/4, Empty)")
    parser.add_argument("--request-review", action="store_true", help="Ask for review instead of paying now")
    parser.add_argument("--refund", type=int, default=0, help="Refund amount in cents (0 skips the refund)")
    parser.add_argument("--reverse-transfer", action="store_true", help="Reverse the host's share of the refund")
    args = parser.parse_args()

    guest = actor_headers(args.guest_id, "guest")
    staff = actor_headers(STAFF_ID, "staff")
    trip_url = f"/api/v1/trips/{args.booking_id}"

    # Step 1: Check the trip can be ended
    print_step(1, "Check trip can be ended")
    check = api_request(guest, "GET", f"{trip_url}/end")
    if not print_result(check) or not check["data"]["can_end"]:
        sys.exit(1)

    # Step 2: End the trip
    print_step(2, "End trip")
    end_result = api_request(guest, "POST", f"{trip_url}/end", {
        "end_mileage": args.end_mileage,
        "fuel_level": args.fuel_level,
        "payment_choice": "request_review" if args.request_review else "pay_now",
    })
    if not print_result(end_result, ["charge_status", "payment_status", "booking_status", "message", "warnings", "next_steps"]):
        sys.exit(1)
    total = end_result["data"]["trip_charge"]["total_charges"]
    print(f"\nTrip charges: {total:,} cents")

    # Step 3: Charge history
    print_step(3, "Charge history")
    history = api_request(guest, "GET", f"{trip_url}/charges")
    if not print_result(history):
        sys.exit(1)

    if not args.refund:
        print("\nNo refund requested, done.")
        return

    # Step 4: Request refund
    print_step(4, f"Request refund of {args.refund:,} cents")
    requester = staff if args.reverse_transfer else guest
    refund_result = api_request(requester, "POST", "/api/v1/refunds", {
        "booking_id": args.booking_id,
        "amount": args.refund,
        "reason": "Refund requested from flow script",
        "reverse_transfer": args.reverse_transfer,
    })
    if not print_result(refund_result, ["id", "amount", "status", "reverse_transfer"]):
        sys.exit(1)
    request_id = refund_result["data"]["id"]

    # Step 5: Approve and process
    print_step(5, "Approve and process refund")
    approve_result = api_request(staff, "POST", f"/api/v1/refunds/{request_id}/approve", {})
    if not print_result(approve_result, ["id", "status", "reviewed_by"]):
        sys.exit(1)
    process_result = api_request(staff, "POST", f"/api/v1/refunds/{request_id}/process")
    if not print_result(process_result, ["id", "status", "processed_amount", "gateway_refund_id", "transfer_reversal_amount", "transfer_reversal_error"]):
        sys.exit(1)

    # Step 6: Audit chain
    print_step(6, "Verify audit log")
    audit = api_request(staff, "GET", "/api/v1/reports/audit/verify")
    if not print_result(audit):
        sys.exit(1)

    print("\n" + "="*60)
    print("TRIP END & REFUND FLOW COMPLETE")
    print("="*60)
    print(f"Booking:        {args.booking_id}")
    print(f"Trip charges:   {total:,} cents")
    print(f"Refunded:       {process_result['data']['processed_amount']:,} cents")
    print(f"Audit chain:    {'valid' if audit['data']['valid'] else 'BROKEN'}")


if __name__ == "__main__":
    main()
