#!/usr/bin/env python3
"""
Demo Requests Script

Drives a running analytics server with synthetic GRC histories: a mix of
stable and deteriorating risks and controls, so the prediction, early
warning and anomaly endpoints all have something to report.

Usage:
    python scripts/demo_requests.py [--url http://localhost:8000] [--risks 8] [--seed 7]
"""

import argparse
import asyncio
import random
import sys
import os
import time
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from detection.synthetic import SyntheticHistoryGenerator

ORGANIZATION_ID = "demo-org"


def build_payloads(num_risks: int, seed: Optional[int]) -> Dict[str, Dict]:
    """Build one request body per demo endpoint."""
    generator = SyntheticHistoryGenerator(seed=seed)
    rnd = random.Random(seed)

    risk_histories = []
    for i in range(num_risks):
        # Roughly a third of the risks deteriorate sharply
        trend = rnd.uniform(0.4, 0.8) if i % 3 == 0 else rnd.uniform(-0.1, 0.1)
        risk_histories.append(generator.risk_history(f"RISK-{i + 1:03d}", base=8.0, trend=trend, spike_rate=0.05))

    control_histories = [
        generator.control_history("CTRL-001"),
        generator.control_history("CTRL-002", drift=-0.03, pass_probability=0.8, pass_drift=-0.08),
        generator.control_history("CTRL-003", drift=-0.01),
    ]
    issue_counts = generator.issue_counts(opened_rate=6.0, closed_rate=5.0, opened_growth=1.0)
    compliance = generator.compliance_history(drift=-0.015)

    def dump(records):
        return [record.model_dump(mode="json", by_alias=True) for record in records]

    latest_scores = {h.risk_id: h.scores[-1].score for h in risk_histories}
    now = datetime.now(timezone.utc).isoformat()

    return {
        "/predictions/risks": {"organizationId": ORGANIZATION_ID, "histories": dump(risk_histories)},
        "/predictions/controls": {"organizationId": ORGANIZATION_ID, "histories": dump(control_histories)},
        "/predictions/issues": {"organizationId": ORGANIZATION_ID, "counts": dump(issue_counts)},
        "/predictions/compliance": {"organizationId": ORGANIZATION_ID, "history": dump(compliance)},
        "/anomalies/scan": {
            "risks": [
                {"id": risk_id, "name": risk_id, "category": "operational", "residualScore": score}
                for risk_id, score in latest_scores.items()
            ],
            "historicalRiskScores": {
                h.risk_id: [p.score for p in h.scores[:-1]] for h in risk_histories
            },
            "historicalIssueCounts": [float(c.opened) for c in issue_counts],
            "asOf": now,
        },
    }


async def send_request(client: httpx.AsyncClient, url: str, path: str, body: Dict) -> Dict:
    """POST one demo body and report what came back."""
    try:
        start = time.time()
        response = await client.post(f"{url}{path}", json=body, timeout=30.0)
        elapsed = (time.time() - start) * 1000

        if response.status_code != 200:
            print(f"  ✗ {path} - Error {response.status_code}: {response.text[:80]}")
            return {"success": False, "path": path, "error": response.status_code}

        data = response.json()["data"]
        print(f"  ✓ {path} - {elapsed:.0f}ms")
        return {"success": True, "path": path, "latency_ms": elapsed, "data": data}

    except httpx.HTTPError as e:
        print(f"  ✗ {path} - Exception: {e}")
        return {"success": False, "path": path, "error": str(e)}


async def run_demo(url: str, num_risks: int, seed: Optional[int]):
    """Run the demo against a live server."""
    print("=" * 60)
    print("GRC Analytics Engine - Demo Requests")
    print("=" * 60)
    print(f"Target: {url}")
    print(f"Risks:  {num_risks}")
    print(f"Seed:   {seed}")
    print("=" * 60)
    print()

    payloads = build_payloads(num_risks, seed)

    async with httpx.AsyncClient() as client:
        # Check health first
        try:
            health = await client.get(f"{url}/health", timeout=10.0)
            if health.status_code == 200:
                print("✓ Server is healthy")
            else:
                print(f"⚠ Server returned {health.status_code}")
        except httpx.HTTPError as e:
            print(f"✗ Cannot reach server: {e}")
            return

        print()
        print("Sending requests...")
        print("-" * 60)

        tasks = [send_request(client, url, path, body) for path, body in payloads.items()]
        results = {r["path"]: r for r in await asyncio.gather(*tasks)}

        risk_predictions = results["/predictions/risks"].get("data") or []
        control_predictions = results["/predictions/controls"].get("data") or []
        compliance = results["/predictions/compliance"].get("data") or {}

        warnings = await send_request(client, url, "/predictions/early-warnings", {
            "riskPredictions": risk_predictions,
            "controlPredictions": control_predictions,
            "compliancePrediction": compliance.get("overallPrediction"),
            "complianceAlerts": compliance.get("alerts", []),
        })

    # Print summary
    print()
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)

    alerts = sum(len(p.get("alerts", [])) for p in risk_predictions + control_predictions)
    scan = results["/anomalies/scan"].get("data") or {}
    print(f"Risk predictions:    {len(risk_predictions)}")
    print(f"Control predictions: {len(control_predictions)}")
    print(f"Prediction alerts:   {alerts}")
    print(f"Scan anomalies:      {len(scan.get('anomalies', []))}")

    for warning in (warnings.get("data") or [])[:5]:
        print(f"  [{warning['severity']:>8}] {warning['message']}")

    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(
        description="Demo requests for the GRC Analytics Engine"
    )
    parser.add_argument(
        "--url", "-u",
        default="http://localhost:8000",
        help="Base URL of the server (default: http://localhost:8000)"
    )
    parser.add_argument(
        "--risks", "-r",
        type=int,
        default=8,
        help="Number of synthetic risks (default: 8)"
    )
    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=None,
        help="Random seed for reproducible histories"
    )

    args = parser.parse_args()

    asyncio.run(run_demo(args.url, args.risks, args.seed))


if __name__ == "__main__":
    main()
