import argparse
import json
import os
import signal
from typing import Optional

from job_scanner.adapters.storage_json import JsonRecordStore, JsonSeenStore, JsonSettingsStore
from job_scanner.config import AppConfig, load_config
from job_scanner.core.errors import ScannerError
from job_scanner.core.models import (
    MAX_EMAIL_LIMIT,
    MIN_EMAIL_LIMIT,
    PROVIDER_NAMES,
    TIME_PERIODS,
    ProgressEvent,
    RunConfig,
    RunStage,
    RunSummary,
    ScanSettings,
)
from job_scanner.core.pipeline import Pipeline, summary_to_dict
from job_scanner.logging_setup import setup_logging
from job_scanner.registry import build_adapter, build_provider


def _ensure_data_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _load(args) -> AppConfig:
    config = load_config(args.config)
    setup_logging("DEBUG" if args.verbose else config.log_level, args.log_file)
    _ensure_data_dir(config.data_dir)
    return config


def _build_pipeline(config: AppConfig, settings: Optional[ScanSettings] = None) -> Pipeline:
    try:
        source = build_adapter(config.source.class_path, config.source.settings)
        ai = build_provider(config, settings) if settings is not None else None
    except ScannerError as exc:
        raise SystemExit(str(exc)) from exc
    return Pipeline(
        source=source,
        ai=ai,
        records=JsonRecordStore(config.data_dir),
        seen=JsonSeenStore(config.data_dir),
        settings=JsonSettingsStore(config.data_dir),
        item_delay=config.pipeline.item_delay,
        rate_limit_backoff=config.pipeline.rate_limit_backoff,
        max_fetch=config.pipeline.max_fetch,
        export_dir=config.export_dir,
    )


def _coerce_setting(key: str, value: str):
    if key == "active_provider":
        if value not in PROVIDER_NAMES:
            raise SystemExit(f"Unknown provider '{value}'. Choose from {', '.join(PROVIDER_NAMES)}.")
        return value
    if key in ("time_period", "email_limit"):
        try:
            number = int(value)
        except ValueError as exc:
            raise SystemExit(f"{key} must be an integer.") from exc
        if key == "time_period" and number not in TIME_PERIODS:
            raise SystemExit(f"time_period must be one of {', '.join(map(str, TIME_PERIODS))}.")
        if key == "email_limit" and not MIN_EMAIL_LIMIT <= number <= MAX_EMAIL_LIMIT:
            raise SystemExit(f"email_limit must be between {MIN_EMAIL_LIMIT} and {MAX_EMAIL_LIMIT}.")
        return number
    raise SystemExit(f"Unknown setting '{key}'.")


def _parse_setting_pairs(pairs: list[str], current: ScanSettings) -> dict:
    updates: dict = {}
    api_keys = dict(current.api_keys)
    for pair in pairs:
        if "=" not in pair:
            raise SystemExit(f"Invalid value '{pair}'. Use key=value.")
        key, value = pair.split("=", 1)
        key = key.strip()
        if key.startswith("api_keys."):
            provider = key.split(".", 1)[1]
            if provider not in api_keys:
                raise SystemExit(f"No API key slot for '{provider}'.")
            api_keys[provider] = value.strip()
            updates["api_keys"] = api_keys
            continue
        updates[key] = _coerce_setting(key, value.strip())
    return updates


def _mask(value: str) -> str:
    if not value:
        return ""
    if value.startswith("$"):
        return value
    return value[:4] + "..." if len(value) > 8 else "****"


def _print_event(event: ProgressEvent) -> None:
    if event.stage == RunStage.DONE:
        return
    print(event.message)


def _print_summary(summary: RunSummary) -> None:
    print(f"Emails scanned:      {summary.scanned}")
    print(f"Confirmations found: {summary.matched}")
    print(f"New records:         {summary.new_records}")
    print(f"Duplicates skipped:  {summary.duplicates_skipped}")
    print(f"Errors:              {summary.errors}")
    if summary.message:
        print(summary.message)


def cmd_auth(args) -> None:
    config = _load(args)
    pipeline = _build_pipeline(config)
    try:
        email = pipeline.authenticate()
    except ScannerError as exc:
        raise SystemExit(f"Authentication failed: {exc}") from exc
    print(f"Authenticated as {email or 'unknown account'}.")


def cmd_revoke(args) -> None:
    config = _load(args)
    pipeline = _build_pipeline(config)
    if pipeline.revoke():
        print("Access revoked.")
    else:
        print("Local credentials removed; remote revoke did not complete.")


def cmd_run(args) -> None:
    config = _load(args)
    settings = JsonSettingsStore(config.data_dir).load()
    if args.provider:
        settings.active_provider = args.provider
    if args.limit is not None:
        settings.email_limit = args.limit
    if args.days is not None:
        settings.time_period = args.days
    problems = settings.validate()
    if problems:
        raise SystemExit("\n".join(problems))

    pipeline = _build_pipeline(config, settings)
    run_config = RunConfig(
        limit=settings.email_limit,
        lookback_days=settings.time_period,
        since_checkpoint=args.since_checkpoint,
    )

    def _interrupt(signum, frame) -> None:
        print("Stopping after the current email...")
        pipeline.cancel_active_run()

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        summary = pipeline.start_run(run_config, on_event=None if args.json else _print_event)
    except ScannerError as exc:
        if exc.summary is not None:
            _print_summary(exc.summary)
        raise SystemExit(f"Scan failed: {exc}") from exc
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.json:
        print(json.dumps(summary_to_dict(summary), indent=2))
    else:
        _print_summary(summary)


def cmd_export(args) -> None:
    config = _load(args)
    pipeline = _build_pipeline(config)
    try:
        path = pipeline.export_records(args.output)
    except ScannerError as exc:
        raise SystemExit(str(exc)) from exc
    print(f"Exported to {path}.")


def cmd_stats(args) -> None:
    config = _load(args)
    stats = _build_pipeline(config).get_scan_stats()
    print(f"Emails scanned so far: {stats.total_seen}")
    print(f"Records saved:         {stats.total_records}")
    print(f"Latest email seen:     {stats.last_checkpoint or 'never'}")


def cmd_clear_history(args) -> None:
    config = _load(args)
    _build_pipeline(config).clear_seen_history()
    print("Scan history cleared.")


def cmd_records(args) -> None:
    config = _load(args)
    records = JsonRecordStore(config.data_dir).read_all()
    if not records:
        print("No records yet.")
        return
    for record in records:
        print(
            f"{record.email_date.date().isoformat()}  {record.company or '-'}  "
            f"{record.position or '-'}  ({record.message_id})"
        )


def cmd_settings(args) -> None:
    config = _load(args)
    store = JsonSettingsStore(config.data_dir)
    if args.action == "set":
        if not args.pairs:
            raise SystemExit("Provide settings as key=value.")
        updates = _parse_setting_pairs(args.pairs, store.load_raw())
        store.update(**updates)
        print("Settings saved.")
    settings = store.load_raw()
    payload = settings.to_dict()
    payload["api_keys"] = {name: _mask(value) for name, value in settings.api_keys.items()}
    print(json.dumps(payload, indent=2))
    for problem in store.load().validate():
        print(f"warning: {problem}")


def cmd_test_provider(args) -> None:
    config = _load(args)
    settings = JsonSettingsStore(config.data_dir).load()
    if args.provider:
        settings.active_provider = args.provider
    try:
        provider = build_provider(config, settings)
    except ScannerError as exc:
        raise SystemExit(str(exc)) from exc
    if not hasattr(provider, "test_connection"):
        print(f"{settings.active_provider} needs no connection.")
        return
    if provider.test_connection():
        print(f"{settings.active_provider} is reachable.")
    else:
        raise SystemExit(f"{settings.active_provider} did not respond correctly.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Job application email scanner")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    auth_cmd = sub.add_parser("auth", help="Connect a Gmail account")
    auth_cmd.set_defaults(func=cmd_auth)

    revoke_cmd = sub.add_parser("revoke", help="Disconnect the Gmail account")
    revoke_cmd.set_defaults(func=cmd_revoke)

    run_cmd = sub.add_parser("run", help="Scan the inbox for application confirmations")
    run_cmd.add_argument("--limit", type=int, help="Maximum new emails to process")
    run_cmd.add_argument("--days", type=int, choices=TIME_PERIODS, help="Lookback window in days")
    run_cmd.add_argument("--provider", choices=PROVIDER_NAMES, help="Inference backend for this run")
    run_cmd.add_argument(
        "--since-checkpoint",
        action="store_true",
        help="Only fetch emails newer than the latest one seen in earlier runs",
    )
    run_cmd.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    run_cmd.set_defaults(func=cmd_run)

    export_cmd = sub.add_parser("export", help="Write records to job_applications.csv")
    export_cmd.add_argument("--output", help="Target directory or file path")
    export_cmd.set_defaults(func=cmd_export)

    stats_cmd = sub.add_parser("stats", help="Show scan statistics")
    stats_cmd.set_defaults(func=cmd_stats)

    clear_cmd = sub.add_parser("clear-history", help="Forget which emails were already scanned")
    clear_cmd.set_defaults(func=cmd_clear_history)

    records_cmd = sub.add_parser("records", help="List saved application records")
    records_cmd.set_defaults(func=cmd_records)

    settings_cmd = sub.add_parser("settings", help="Show or change persisted settings")
    settings_cmd.add_argument("action", choices=["show", "set"])
    settings_cmd.add_argument(
        "pairs",
        nargs="*",
        help="key=value pairs: active_provider, time_period, email_limit, api_keys.<provider>",
    )
    settings_cmd.set_defaults(func=cmd_settings)

    test_cmd = sub.add_parser("test-provider", help="Check the inference backend responds")
    test_cmd.add_argument("--provider", choices=PROVIDER_NAMES)
    test_cmd.set_defaults(func=cmd_test_provider)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
