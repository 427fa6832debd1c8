#!/usr/bin/env python3
"""
TTFB (Time To First Byte) probe for the Claude CLI Gateway
Measures how quickly a running gateway opens the stream and how long until
the first real content chunk arrives
"""

import json
import os
import sys
import time

import requests

BASE_URL = os.getenv("CLAUDE_GATEWAY_URL", "http://127.0.0.1:3456")

PROBES = [
    {"name": "Opus - Simple Question", "model": "claude-opus-4", "message": "Say 'hello' in one word"},
    {"name": "Sonnet - Simple Question", "model": "claude-sonnet-4", "message": "Say 'hello' in one word"},
    {"name": "Haiku - Simple Question", "model": "claude-haiku-4", "message": "Say 'hello' in one word"},
]


def probe(name, model, message, timeout=120):
    """Returns (ttfb, time to first content) in seconds; either may be None"""
    print(f"\n{'='*60}")
    print(f"Probing: {name}")
    print(f"{'='*60}")

    payload = {
        "model": model,
        "messages": [{"role": "user", "content": message}],
        "stream": True,
    }
    headers = {
        "Content-Type": "application/json",
        "X-Conversation-Id": f"ttfb-probe-{int(time.time())}",
    }

    first_byte = None
    first_content = None
    start = time.time()
    try:
        response = requests.post(
            f"{BASE_URL}/v1/chat/completions", json=payload, headers=headers, stream=True, timeout=timeout
        )
        for line in response.iter_lines(decode_unicode=True):
            if first_byte is None:
                first_byte = time.time() - start
                print(f"✓ First byte: {first_byte:.3f}s ({first_byte*1000:.0f}ms)")
            if not line or not line.startswith("data: ") or line == "data: [DONE]":
                continue
            chunk = json.loads(line[len("data: "):])
            if "error" in chunk:
                print(f"✗ Error: {chunk['error'].get('message')}")
                break
            delta = chunk["choices"][0]["delta"]
            if delta.get("content"):
                first_content = time.time() - start
                print(f"✓ First content: {first_content:.3f}s ({first_content*1000:.0f}ms)")
                print(f"  {delta['content'][:100]!r}")
                break
    except requests.exceptions.Timeout:
        print(f"✗ Request timed out ({timeout}s)")
    except requests.exceptions.RequestException as e:
        print(f"✗ Error: {e}")

    return first_byte, first_content


def main():
    print("\n" + "="*60)
    print(f"Claude CLI Gateway TTFB Probe ({BASE_URL})")
    print("="*60)

    results = []
    for p in PROBES:
        ttfb, ttfc = probe(p["name"], p["model"], p["message"])
        if ttfc is not None:
            results.append((p["name"], ttfb, ttfc))
        time.sleep(2)  # Brief pause between probes

    print("\n" + "="*60)
    print("SUMMARY")
    print("="*60)
    if not results:
        print("No successful probes")
        return 1
    for name, ttfb, ttfc in results:
        print(f"{name:30s} first byte {ttfb:6.3f}s   first content {ttfc:6.3f}s")
    avg = sum(t for _, _, t in results) / len(results)
    print(f"\nAverage time to first content: {avg:.3f}s ({avg*1000:.0f}ms)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
