"""CLI entry point for the webchat-backend package."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 10)


def _print_setup_banner(port: int, *, for_startup: bool = True) -> None:
    """Print environment guidance. If for_startup, show 'server started' line; else show 'Setup' header."""
    from .config import get_settings

    settings = get_settings()
    base = f"http://localhost:{port}"
    print()
    if for_startup:
        print("✅ Webchat backend started")
    else:
        print("Webchat Backend Setup")
    print("Database: {}".format("postgres (DATABASE_URL)" if os.getenv("DATABASE_URL") else settings.db_path))
    print("Rate limit backend: {}".format(settings.rate_limit_backend))
    print()
    print("Docs:     {}/docs".format(base))
    print("Health:   {}/health".format(base))
    print()
    print("────────────────────────────────────────────")
    print("Create a .env file in this folder with the keys below.")
    print()
    print("   SUPABASE_JWT_SECRET=...            # verifies user sessions")
    print("   DATABASE_URL=postgresql://...      # optional, defaults to local SQLite")
    print("   WEB_PUSH_PUBLIC_KEY=...            # VAPID public key")
    print("   WEB_PUSH_PRIVATE_KEY=...           # VAPID private key")
    print("   WEB_PUSH_API_TOKEN=...             # bearer for POST /push/send")
    print("   AGENT_LEARN_API_KEY=...            # bearer for POST /profile/learn")
    missing = [
        name
        for name, value in (
            ("SUPABASE_JWT_SECRET", settings.supabase_jwt_secret),
            ("WEB_PUSH_PUBLIC_KEY", settings.web_push_public_key),
            ("WEB_PUSH_PRIVATE_KEY", settings.web_push_private_key),
            ("WEB_PUSH_API_TOKEN", settings.web_push_api_token),
            ("AGENT_LEARN_API_KEY", settings.agent_learn_api_key),
        )
        if not value
    ]
    if missing:
        print()
        print("Not set: {}".format(", ".join(missing)))
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("Webchat Backend CLI")
    print()
    print("Usage:")
    print("  webchat                                  Start the API server")
    print("  webchat setup                            Print setup/env guidance")
    print("  webchat doctor                           Print install/environment diagnostics")
    print("  webchat cleanup-subscriptions [--dry-run]")
    print("                                           Keep only the newest push subscription per user")
    print()


def _print_doctor() -> None:
    print("Webchat Backend Doctor")
    print()
    print(f"Platform: {platform.platform()}")
    print(f"Python:   {_python_version_str()}")
    print(f"Exe:      {sys.executable}")
    print(f"In venv:  {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin: {shutil.which('webchat') or 'not found'}")

    try:
        pip_version = subprocess.check_output(
            [sys.executable, "-m", "pip", "--version"],
            text=True,
            stderr=subprocess.STDOUT,
        ).strip()
    except Exception as exc:  # pragma: no cover - diagnostics fallback
        pip_version = f"unavailable ({exc})"
    print(f"Pip:      {pip_version}")

    try:
        import pywebpush  # noqa: F401

        webpush_status = "installed"
    except ImportError:
        webpush_status = "missing (push delivery disabled)"
    print(f"Webpush:  {webpush_status}")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")


def _run_cleanup(dry_run: bool = False) -> int:
    """Delete all but the newest subscription for every user. Returns rows deleted."""
    from .storage import push_store

    groups = push_store.find_duplicate_subscriptions()
    print(f"Users with multiple subscriptions: {len(groups)}")
    ids_to_delete = []
    for user_id, subs in groups.items():
        print(f"  User {user_id}: {len(subs)} subscriptions")
        for idx, sub in enumerate(subs):
            status = "[KEEP - MOST RECENT]" if idx == 0 else "[DELETE]"
            print(f"    - ID: {sub['id']}, Updated: {sub['updated_at']} {status}")
            if idx > 0:
                ids_to_delete.append(sub["id"])

    if not ids_to_delete:
        print("No duplicates found. Cleanup complete.")
        return 0
    if dry_run:
        print(f"Dry run: {len(ids_to_delete)} subscription(s) would be deleted")
        return 0

    removed = push_store.delete_subscription_ids(ids_to_delete)
    print(f"Deleted {removed} duplicate subscription(s)")
    return removed


def main() -> None:
    """Run the API server or handle setup/doctor/cleanup commands."""
    port = int(os.environ.get("PORT", "4280"))
    host = os.environ.get("HOST", "0.0.0.0")

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(port=port, for_startup=False)
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        if subcommand == "cleanup-subscriptions":
            _run_cleanup(dry_run="--dry-run" in sys.argv[2:])
            sys.exit(0)
        print(f"Unknown command: {subcommand}", file=sys.stderr)
        _print_help()
        sys.exit(2)

    import uvicorn

    _print_setup_banner(port=port, for_startup=True)

    uvicorn.run(
        "webchat.main:app",
        host=host,
        port=port,
        factory=False,
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
