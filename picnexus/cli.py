"""
Command line front end.

    picnexus upload FILE... [--services a,b] [--max-concurrent N] [--single]
    picnexus history [--limit N]
    picnexus retry [ID | --all]
    picnexus sync
    picnexus config show | set SERVICE KEY VALUE | enable SERVICE...
    picnexus log show [--tail BYTES] | path | settings | set KEY VALUE
"""

import argparse
import json
import sys
from typing import List, Optional

from tqdm import tqdm

from picnexus import __version__
from picnexus.core.config import sanitize_config
from picnexus.core.constants import QUEUE_STATE_COMPLETE
from picnexus.core.errors import PicNexusError
from picnexus.core.host_config import get_host_config_manager
from picnexus.core.models import QueueItem
from picnexus.network.http_host_uploader import build_registry_uploaders
from picnexus.network.uploaders import UploaderRegistry
from picnexus.processing.background import get_background_tasks
from picnexus.processing.orchestrator import UploadOrchestrator
from picnexus.processing.queue_manager import QueueManager
from picnexus.processing.webdav_sync import WebDAVSync
from picnexus.storage.stores import open_stores
from picnexus.utils.logger import (
    log, install_exception_hook, register_sink, unregister_sink, set_debug, set_quiet,
)
from picnexus.utils.logging import get_logger
from picnexus.utils.paths import get_config_path, load_app_defaults


def build_orchestrator() -> UploadOrchestrator:
    """Wire stores, host uploaders and sinks from the application settings."""
    defaults = load_app_defaults()
    hosts = get_host_config_manager()
    registry = UploaderRegistry(build_registry_uploaders(hosts.hosts))
    if not len(registry):
        log("No host definitions found, uploads will fail", level="warning", category="general")
    else:
        log(f"Loaded hosts: {', '.join(hosts.get_all_host_ids())}", level="debug", category="general")
    return UploadOrchestrator(
        stores=open_stores(defaults['data_dir']),
        registry=registry,
        webdav_sync=WebDAVSync(timeout=defaults['webdav_timeout']),
        backup_timeout=defaults['backup_timeout'],
    )


def _tqdm_sink(formatted: str, level: str, category: str) -> None:
    tqdm.write(formatted, file=sys.stderr if level in ("warning", "error", "critical") else sys.stdout)


def cmd_upload(orchestrator: UploadOrchestrator, args) -> int:
    config = orchestrator.load_config()

    if args.single:
        failures = 0
        for path in args.files:
            outcome = orchestrator.handle_file_upload(path, config)
            if outcome.ok:
                print(outcome.link)
            else:
                failures += 1
                print(f"{path}: {outcome.status}: {outcome.message}", file=sys.stderr)
        return 1 if failures else 0

    services = [s.strip() for s in args.services.split(",") if s.strip()] if args.services else config.enabled_services
    max_concurrent = args.max_concurrent or load_app_defaults()['max_concurrent']

    with tqdm(total=len(args.files), desc="Uploading", unit="file") as pbar:
        def finished(item: QueueItem) -> None:
            pbar.update(1)
            pbar.set_postfix_str(item.file_name)

        queue = QueueManager(orchestrator, max_concurrent=max_concurrent, on_item_finished=finished)
        register_sink(_tqdm_sink)
        try:
            item_ids = queue.process_files(args.files, config, services)
        finally:
            unregister_sink(_tqdm_sink)
            queue.close()

    failures = 0
    for item_id in item_ids:
        item = queue.get_item(item_id)
        if item.status == QUEUE_STATE_COMPLETE:
            print(f"{item.file_name}: {item.primary_url}")
        else:
            failures += 1
            print(f"{item.file_name}: {item.error_message}", file=sys.stderr)
    return 1 if failures else 0


def cmd_history(orchestrator: UploadOrchestrator, args) -> int:
    for item in orchestrator.get_history(args.limit):
        services = ", ".join(f"{r.service_id}={r.status}" for r in item.results)
        link = item.generated_link or "-"
        print(f"{item.id}  {item.local_file_name}  {link}  [{services}]")
    return 0


def cmd_retry(orchestrator: UploadOrchestrator, args) -> int:
    queue = orchestrator.retry_queue
    if args.all:
        summary = queue.retry_all()
        print(f"{summary['succeeded']} succeeded, {summary['failed']} failed")
        return 1 if summary['failed'] else 0

    if args.id:
        outcome = queue.retry(args.id)
        if outcome is None:
            print(f"No retry entry {args.id}", file=sys.stderr)
            return 1
        print(outcome.link if outcome.ok else f"{outcome.status}: {outcome.message}")
        return 0 if outcome.ok else 1

    for item in queue.list():
        print(f"{item.id}  {item.file_path}  {item.error_message}")
    return 0


def cmd_sync(orchestrator: UploadOrchestrator, args) -> int:
    config = orchestrator.load_config()
    if not config.webdav.is_configured:
        print("WebDAV is not configured", file=sys.stderr)
        return 1
    items = orchestrator.get_history()
    ok = orchestrator.webdav_sync.sync(items, config.webdav)
    print("Synced" if ok else "Sync failed, see log")
    return 0 if ok else 1


def cmd_config(orchestrator: UploadOrchestrator, args) -> int:
    config = orchestrator.load_config()
    if args.config_command == "set":
        config.set_service_option(args.service, args.key, args.value)
        orchestrator.save_config(config)
    elif args.config_command == "enable":
        unknown = [s for s in args.services if s not in orchestrator.registry]
        if unknown:
            print(f"Unknown service(s): {', '.join(unknown)}", file=sys.stderr)
            return 1
        config.enabled_services = list(args.services)
        orchestrator.save_config(config)
    print(json.dumps(sanitize_config(config), indent=2, ensure_ascii=False))
    return 0


def cmd_log(orchestrator: UploadOrchestrator, args) -> int:
    app_logger = get_logger()
    if args.log_command == "path":
        print(app_logger.get_current_log_path())
    elif args.log_command == "settings":
        print(json.dumps(app_logger.get_settings(), indent=2))
    elif args.log_command == "set":
        if args.key not in app_logger.DEFAULTS:
            print(f"Unknown log setting: {args.key}", file=sys.stderr)
            return 1
        app_logger.update_settings(**{args.key: args.value})
        print(f"{args.key} = {args.value}")
    else:
        sys.stdout.write(app_logger.read_current_log(tail_bytes=args.tail))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="picnexus",
        description='Upload images to several image hosts.\n\nSettings file: ' + get_config_path(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-v', '--version', action='version', version=f"picnexus {__version__}")
    parser.add_argument('--debug', action='store_true', help='Print all log messages to the console')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only print warnings and errors to the console')
    sub = parser.add_subparsers(dest='command', required=True)

    upload = sub.add_parser('upload', help='Upload one or more files')
    upload.add_argument('files', nargs='+', help='Image files to upload')
    upload.add_argument('--services', help='Comma separated service ids (default: enabled services)')
    upload.add_argument('--max-concurrent', type=int, help='Files uploaded at the same time (default: 3)')
    upload.add_argument('--single', action='store_true',
                        help='Upload through the primary service only, with output format and backup')

    history = sub.add_parser('history', help='List upload history')
    history.add_argument('--limit', type=int, default=20, help='Number of entries (default: 20)')

    retry = sub.add_parser('retry', help='List or retry failed uploads')
    retry.add_argument('id', nargs='?', help='Retry entry id')
    retry.add_argument('--all', action='store_true', help='Retry every entry')

    sub.add_parser('sync', help='Push history to WebDAV')

    config = sub.add_parser('config', help='Show or change the user configuration')
    config_sub = config.add_subparsers(dest='config_command', required=True)
    config_sub.add_parser('show', help='Print the configuration with secrets masked')
    set_parser = config_sub.add_parser('set', help='Set one option of a service')
    set_parser.add_argument('service')
    set_parser.add_argument('key')
    set_parser.add_argument('value')
    enable = config_sub.add_parser('enable', help='Set the enabled services, in priority order')
    enable.add_argument('services', nargs='+')

    log_parser = sub.add_parser('log', help='Show the log file or change file logging settings')
    log_sub = log_parser.add_subparsers(dest='log_command', required=True)
    show = log_sub.add_parser('show', help='Print the current log file')
    show.add_argument('--tail', type=int, help='Only the last BYTES bytes')
    log_sub.add_parser('path', help='Print the log file path')
    log_sub.add_parser('settings', help='Print the [LOGGING] settings')
    log_set = log_sub.add_parser('set', help='Change one [LOGGING] setting')
    log_set.add_argument('key')
    log_set.add_argument('value')
    return parser


COMMANDS = {
    'upload': cmd_upload,
    'history': cmd_history,
    'retry': cmd_retry,
    'sync': cmd_sync,
    'config': cmd_config,
    'log': cmd_log,
}


def main(argv: Optional[List[str]] = None) -> int:
    install_exception_hook()
    args = build_parser().parse_args(argv)
    if args.debug:
        set_debug(True)
    if args.quiet:
        set_quiet(True)

    try:
        orchestrator = build_orchestrator()
        code = COMMANDS[args.command](orchestrator, args)
    except PicNexusError as e:
        log(f"{type(e).__name__}: {e}", level="error", category="general")
        return 1
    except KeyboardInterrupt:
        print("\nExiting gracefully...")
        return 130

    # Let detached history syncs finish before the process exits
    get_background_tasks().wait_all(timeout=30)
    return code


if __name__ == "__main__":
    sys.exit(main())
