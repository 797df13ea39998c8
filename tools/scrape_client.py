#!/usr/bin/env python3
"""Test client for the DSMR exporter's scrape endpoint.

Usage:
    python tools/scrape_client.py [HOST] [PORT]
    python tools/scrape_client.py -f [HOST] [PORT]
    python tools/scrape_client.py -v [HOST] [PORT]

Options:
    -f, --follow    Keep polling and print a summary per scrape
    -v, --verbose   Print the raw exposition text

Defaults to localhost:3000. Requires httpx and prometheus_client.
"""

import argparse
import asyncio
from datetime import datetime

import httpx
from prometheus_client.parser import text_string_to_metric_families


def summarize(text: str) -> dict[str, dict[str, float]]:
    """Map metric sample name -> {label string: value}."""
    samples: dict[str, dict[str, float]] = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name.endswith("_created"):
                continue
            labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
            samples.setdefault(sample.name, {})[labels] = sample.value
    return samples


def print_summary(samples: dict[str, dict[str, float]]) -> None:
    power_in = samples.get("power_delivered_watts", {}).get("", 0.0)
    power_out = samples.get("power_received_watts", {}).get("", 0.0)
    tariff = samples.get("energy_tariff", {}).get("", 0.0)
    print(f"  PWR | in={power_in:>7.1f}W  out={power_out:>7.1f}W  tariff={tariff:.0f}")

    volts = samples.get("phase_voltage_volts", {})
    amps = samples.get("phase_current_amperes", {})
    parts = []
    for phase in ("1", "2", "3"):
        key = f"phase={phase}"
        if key in volts:
            parts.append(f"L{phase}:{volts[key]:.1f}V {amps.get(key, 0.0):.0f}A")
    if parts:
        print(f"  PH  | {' | '.join(parts)}")

    delivered = sum(samples.get("energy_delivered_joules_total", {}).values()) / 3_600_000
    received = sum(samples.get("energy_received_joules_total", {}).values()) / 3_600_000
    gas = samples.get("gas_delivered_cubic_meters_total", {}).get("", 0.0)
    print(f"  TOT | delivered={delivered:.3f} kWh  received={received:.3f} kWh  gas={gas:.3f} m3")


async def scrape(client: httpx.AsyncClient, url: str, verbose: bool) -> None:
    resp = await client.get(url, timeout=10.0)
    resp.raise_for_status()
    if verbose:
        print(resp.text)
    if not resp.text:
        print("  (no fresh data — exporter has not decoded a telegram recently)")
        return
    print_summary(summarize(resp.text))


async def main(host: str, port: int, follow: bool, verbose: bool, interval: float) -> None:
    url = f"http://{host}:{port}/metrics"
    print(f"Scraping {url}...")

    async with httpx.AsyncClient() as client:
        await scrape(client, url, verbose)
        if not follow:
            return

        print()
        print("=== Following (Ctrl+C to stop) ===", flush=True)
        try:
            while True:
                await asyncio.sleep(interval)
                ts = datetime.now().strftime("%H:%M:%S")
                print(f"[{ts}]", flush=True)
                try:
                    await scrape(client, url, verbose)
                except httpx.HTTPError as err:
                    print(f"  scrape failed: {err}")
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="DSMR exporter scrape client")
    parser.add_argument("host", nargs="?", default="localhost", help="Exporter host")
    parser.add_argument("port", nargs="?", type=int, default=3000, help="Exporter port")
    parser.add_argument("-f", "--follow", action="store_true", help="Keep polling")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print raw exposition")
    parser.add_argument("-i", "--interval", type=float, default=5.0, help="Poll interval (s)")
    args = parser.parse_args()
    asyncio.run(main(args.host, args.port, args.follow, args.verbose, args.interval))
