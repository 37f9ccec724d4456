#!/usr/bin/env python3
"""
Smoke check against a running dashboard server (python run_server.py)
"""

import sys

import requests

BASE_URL = "http://localhost:8000"


def check_health():
    print("🔍 Checking /health...")
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=5)
    except requests.exceptions.ConnectionError:
        print("❌ Health: FAILED - Cannot connect to server")
        return False
    if response.status_code != 200:
        print(f"❌ Health: FAILED (Status: {response.status_code})")
        return False
    print(f"✅ Health: PASSED {response.json()}")
    return True


def check_opportunities():
    print("\n🔍 Checking /api/opportunities...")
    response = requests.get(f"{BASE_URL}/api/opportunities", params={"limit": 5, "sort_by": "apy"}, timeout=60)
    if response.status_code != 200:
        print(f"❌ Opportunities: FAILED (Status: {response.status_code}) {response.text}")
        return False
    data = response.json()
    print(f"✅ Opportunities: PASSED ({len(data)} returned)")
    for o in data:
        live = "live" if o["is_live"] else "estimated"
        print(f"   {o['icon']} {o['protocol']:<14} {o['pair']:<22} {o['apy']:>8} {o['tvl']:>10} {o['risk']:<6} {live}")
    return True


def check_metrics():
    print("\n🔍 Checking /api/metrics...")
    response = requests.get(f"{BASE_URL}/api/metrics", timeout=60)
    if response.status_code != 200:
        print(f"❌ Metrics: FAILED (Status: {response.status_code})")
        return False
    m = response.json()
    print(f"✅ Metrics: PASSED TVL ${m['total_tvl'] / 1e6:,.1f}M, avg APY {m['average_apy']:.2f}%, protocols {m['active_protocols']}")
    return True


def check_data_quality():
    print("\n🔍 Checking /api/data-quality...")
    response = requests.get(f"{BASE_URL}/api/data-quality", timeout=60)
    if response.status_code != 200:
        print(f"❌ Data quality: FAILED (Status: {response.status_code})")
        return False
    q = response.json()
    print(f"✅ Data quality: PASSED {q['data_quality']} / {q['report']['status']}: {q['report']['message']}")
    return True


def main():
    print("=" * 60)
    print("🚀 AVALANCHE YIELD DASHBOARD SMOKE CHECK")
    print("=" * 60)

    checks = [check_health, check_opportunities, check_metrics, check_data_quality]
    passed = 0
    for check in checks:
        try:
            if check():
                passed += 1
        except requests.exceptions.RequestException as e:
            print(f"❌ {check.__name__}: FAILED - {e}")
            break

    print("\n" + "=" * 60)
    print(f"📊 SUMMARY: {passed}/{len(checks)} checks passed")
    print("=" * 60)
    return 0 if passed == len(checks) else 1


if __name__ == "__main__":
    sys.exit(main())
