#!/usr/bin/env python3
"""
CLI for trying out the scraper and extractor by hand.

Usage:
    python -m adapter.scraper.cli

Commands:
    plan    - Show the queries that would be run for an entity
    search  - Fetch one query and print the extracted posts
    json    - Same as search, printed as JSON
"""

import cmd
import json
import os
import sys

from dotenv import load_dotenv

# Ensure backend is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from adapter.models import CandidatePost, MonitoredEntity
from adapter.scraper import (
    ScraperAdapter,
    ScraperError,
    ScraperAuthenticationError,
    ScraperTimeoutError,
    ScraperAPIError,
)
from adapter.scraper.extractor import extract_candidates
from core.planner import plan_queries


load_dotenv()


def _print_verbose_error(e: ScraperError):
    """Print verbose error information."""
    print("\n" + "=" * 60)
    print("✗ ERROR DETAILS")
    print("=" * 60)
    print(f"  Type: {type(e).__name__}")
    print(f"  Message: {e}")

    if isinstance(e, ScraperAuthenticationError):
        print("\n  💡 Troubleshooting:")
        print("     - Check SCRAPERAPI_KEY environment variable is set")
        print("     - Verify the key has credits left")

    elif isinstance(e, ScraperTimeoutError):
        print("\n  💡 Troubleshooting:")
        print("     - The search frontend may be slow; raise FETCH_TIMEOUT_SECONDS")

    elif isinstance(e, ScraperAPIError):
        if e.status_code:
            print(f"  Status Code: {e.status_code}")
        if e.response_text:
            print(f"  Response: {e.response_text[:500]}")
        if e.status_code and e.status_code >= 500:
            print("\n  💡 The proxy or the search frontend is failing, try again later")

    print("=" * 60 + "\n")


class ScraperCLI(cmd.Cmd):
    """Interactive CLI for the scraper adapter."""

    intro = """
╔═══════════════════════════════════════════════════════════════╗
║                    Scraper Adapter CLI                         ║
║  Commands: plan, search, json, status, help, quit              ║
╚═══════════════════════════════════════════════════════════════╝
"""
    prompt = "scraper> "

    def __init__(self, adapter: ScraperAdapter = None):
        super().__init__()
        self.adapter = adapter or ScraperAdapter()
        if self.adapter.is_configured:
            print("✓ ScraperAdapter initialized with API key")
        else:
            print("⚠ ScraperAdapter initialized WITHOUT API key - fetches will fail")

    def _print_post(self, post: CandidatePost, index: int):
        text = post.text[:120] + ("..." if len(post.text) > 120 else "")
        badge = "★ official" if post.is_official else "community"
        print(f"[{index}] ({badge}) {text}")

    def _fetch(self, query: str):
        document = self.adapter.fetch(query)
        return extract_candidates(document, query, limit=10)

    def do_status(self, arg):
        """Show adapter configuration."""
        print("\n=== Scraper Status ===")
        print(f"Configured: {'Yes' if self.adapter.is_configured else 'No'}")
        print(f"Proxy: {self.adapter.base_url}")
        print(f"Search frontend: {self.adapter.search_url}")
        print(f"Timeout: {self.adapter.timeout}s\n")

    def do_plan(self, arg):
        """
        Show the query plan for an entity.

        Usage: plan <name> [symbol] [handle]

        Examples:
            plan Kaspa KAS KaspaCurrency
            plan Ethereum ETH
        """
        parts = arg.split()
        if not parts:
            print("Usage: plan <name> [symbol] [handle]")
            return

        entity = MonitoredEntity(
            id="cli",
            name=parts[0],
            symbol=parts[1] if len(parts) > 1 else None,
            handle=parts[2] if len(parts) > 2 else None,
        )
        for i, query in enumerate(plan_queries(entity), 1):
            print(f"  {i}. {query}")
            print(f"     {self.adapter.build_target_url(query)}")

    def do_search(self, arg):
        """
        Fetch one query and print the extracted posts.

        Usage: search <query>

        Examples:
            search from:KaspaCurrency
            search $KAS
        """
        query = arg.strip()
        if not query:
            print("Usage: search <query>")
            return

        print(f"\nSearching for '{query}'...")
        print("-" * 60)

        try:
            posts = self._fetch(query)
        except ScraperError as e:
            _print_verbose_error(e)
            return

        if not posts:
            print("No posts found.")
            return

        for i, post in enumerate(posts, 1):
            self._print_post(post, i)
        print("-" * 60)
        print(f"Total: {len(posts)} posts")

    def do_json(self, arg):
        """
        Fetch one query and output the extracted posts as JSON.

        Usage: json <query>
        """
        query = arg.strip()
        if not query:
            print("Usage: json <query>")
            return

        try:
            posts = self._fetch(query)
        except ScraperError as e:
            _print_verbose_error(e)
            return

        print(json.dumps([p.model_dump(mode="json") for p in posts], indent=2))

    def do_quit(self, arg):
        """Exit the CLI."""
        print("Goodbye!")
        return True

    def do_exit(self, arg):
        """Exit the CLI."""
        return self.do_quit(arg)

    def do_EOF(self, arg):
        """Handle Ctrl+D."""
        print()
        return self.do_quit(arg)

    def emptyline(self):
        """Do nothing on empty line."""
        pass


def main():
    """Run the CLI."""
    cli = ScraperCLI()
    try:
        cli.cmdloop()
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
