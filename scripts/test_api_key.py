#!/usr/bin/env python3
"""
Direct Gemini API Key Test
Sends one short prompt through the pipeline's Gemini client
"""

import asyncio
import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT_DIR))

from src.infrastructure.clients.gemini_client import create_text_generator
from src.services.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    RateLimitExceededError,
)

TEST_PROMPT = "Reply with the single word: ready"


async def check_key() -> str:
    client = create_text_generator()
    try:
        return await client.generate(TEST_PROMPT, max_output_tokens=16)
    finally:
        await client.aclose()


def main():
    print("=" * 60)
    print("  🔑 Gemini API Key Direct Test")
    print("=" * 60)

    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")

    if not api_key:
        print("\n❌ GEMINI_API_KEY not found!")
        print("   Export GEMINI_API_KEY (or GOOGLE_API_KEY) and run again")
        sys.exit(1)

    print(f"\n✅ API Key Found")
    print(f"   Length: {len(api_key)} characters")
    print(f"   Preview: {api_key[:6]}...{api_key[-4:]}")

    print("\n🔄 Testing API call...")

    try:
        reply = asyncio.run(check_key())

        print(f"\n✅ API Call Successful!")
        print(f"   Reply: {reply.strip()[:80]}")
        print(f"\n✅ Your API key is working correctly!")

    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}")
        sys.exit(1)

    except RateLimitExceededError as e:
        print(f"\n⚠️  Rate limited or quota exhausted")
        print(f"   Retry after: {e.retry_after or 'unknown'} seconds")
        sys.exit(1)

    except ExternalServiceError as e:
        print(f"\n❌ API Error {e.status_code or ''}: {e}")

        if e.status_code in (401, 403):
            print(f"\n   🔧 The key was rejected!")
            print(f"\n   To fix:")
            print(f"   1. Go to: https://aistudio.google.com/app/apikey")
            print(f"   2. Create or copy a valid key")
            print(f"   3. Check the Generative Language API is enabled")
            print(f"   4. Run this test again")
        elif e.status_code == 400:
            print(f"   Your API key format or model name might be incorrect")

        sys.exit(1)

    print("\n" + "=" * 60)


if __name__ == "__main__":
    main()
