import asyncio
import argparse
import json
import sys
from datetime import datetime
from dotenv import load_dotenv

# Force unbuffered output
sys.stdout.reconfigure(line_buffering=True)
sys.stderr.reconfigure(line_buffering=True)

from config import load_settings
from runner import RenewalRunner


async def main(
    headless: bool = False,
    url: str | None = None,
    recognizer: str | None = None,
    force_submit: bool = True,
):
    overrides = {}
    if headless:
        overrides["headless"] = True
    if not force_submit:
        overrides["submit_on_token_timeout"] = False
    if url:
        overrides["login_url"] = url
    if recognizer:
        overrides["recognizer"] = recognizer
    settings = load_settings(**overrides)

    if settings.recognizer == "gemini" and not settings.gemini_api_key:
        print("ERROR: Set GEMINI_API_KEY environment variable to use the gemini recognizer", flush=True)
        print("  export GEMINI_API_KEY=your-api-key", flush=True)
        print("  or create a .env file with GEMINI_API_KEY=your-api-key", flush=True)
        sys.exit(1)

    print("Starting VPS renewal", flush=True)
    print(f"Login page: {settings.login_url}", flush=True)
    print(f"Recognizer: {settings.recognizer}", flush=True)
    print(f"Time limit: {settings.max_time_seconds}s", flush=True)
    print(f"Headless: {settings.headless}", flush=True)
    print(f"Force submit on token timeout: {settings.submit_on_token_timeout}", flush=True)
    print("-" * 50, flush=True)

    runner = RenewalRunner(settings)

    try:
        results = await asyncio.wait_for(runner.run(), timeout=settings.max_time_seconds)
    except asyncio.TimeoutError:
        print(f"\nTIMEOUT: Exceeded {settings.max_time_seconds}s limit")
        results = runner.metrics.get_summary()

    # Save results
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_file = f"results_{timestamp}.json"

    with open(results_file, "w") as f:
        json.dump(results, f, indent=2)

    print(f"\nResults saved to: {results_file}")

    return results


def cli():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Extend the free VPS expiration")
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run browser in headless mode (manual login is impossible then)"
    )
    parser.add_argument("--url", help="Login page URL")
    parser.add_argument(
        "--recognizer",
        choices=["http", "gemini"],
        help="CAPTCHA recognition backend"
    )
    parser.add_argument(
        "--no-force-submit",
        action="store_true",
        help="Do not submit when the human verification token never appears"
    )
    args = parser.parse_args()

    asyncio.run(main(
        headless=args.headless,
        url=args.url,
        recognizer=args.recognizer,
        force_submit=not args.no_force_submit,
    ))


if __name__ == "__main__":
    cli()
