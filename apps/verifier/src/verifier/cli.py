from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import asdict
from datetime import date, datetime, timezone
import json
import logging
from pathlib import Path
import sys

from verifier.client import HttpVerificationClient, network_from_url, resolve_api_url
from verifier.config import (
    ConfigError,
    ConfigLayer,
    ResolvedConfig,
    default_layer,
    get_settings,
    load_config_file,
    merge_config,
)
from verifier.services.watch.batch import BatchOrchestrator, BatchResult, BatchTally
from verifier.services.watch.errors import (
    ClassLookupError,
    ClassNotFoundError,
    InvalidClassHashError,
    PollError,
    StorageError,
    SubmissionError,
)
from verifier.services.watch.estimator import NoDurations, ProgressEstimator
from verifier.services.watch.history import HistoryStore, open_history_store
from verifier.services.watch.notifications import ConsoleNotifier
from verifier.services.watch.poller import POLL_INTERVAL_SECONDS, StatusPoller, WatchOutcome, WatchResult
from verifier.services.watch.status import JobStatus, resolve_status_filter
from verifier.services.watch.submitter import JobSubmitter, validate_class_hash
from verifier.services.watch.types import (
    ClassVerificationInfo,
    HistoryFilter,
    ProgressSnapshot,
    RemoteJobStatus,
    SortKey,
    SubmissionRequest,
    VerificationJob,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_JOB_FAILED = 1
EXIT_TIMED_OUT = 2
EXIT_FATAL = 3
EXIT_SUBMISSION_ERROR = 4
EXIT_USAGE = 5
EXIT_CLASS_NOT_FOUND = 1

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


class UsageError(ValueError):
    pass


def _out(line: str = "") -> None:
    print(line, flush=True)


def _err(line: str) -> None:
    print(line, file=sys.stderr, flush=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _flag(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    # None keeps "not given on the command line" distinct from False for config merging.
    parser.add_argument(name, action="store_const", const=True, default=None, help=help_text)


def _add_network_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--network", help="Network to use (mainnet, sepolia, dev)")
    parser.add_argument("--url", help="Custom verification API base URL")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="verifier",
        description="Submit contract verification jobs and track them to completion",
    )
    _flag(parser, "--verbose", "Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    verify = commands.add_parser("verify", help="Submit one contract, or every [[contracts]] entry")
    _add_network_arguments(verify)
    verify.add_argument("--path", default=".", help="Project directory (default: current directory)")
    verify.add_argument("--class-hash", help="Declared class hash to verify")
    verify.add_argument("--contract-name", help="Contract name as shown on the explorer")
    verify.add_argument(
        "--file",
        action="append",
        default=[],
        dest="files",
        help="Source file to include, relative to --path (repeatable)",
    )
    verify.add_argument("--contract-file", default="", help="File that defines the contract")
    verify.add_argument("--license", help="SPDX license identifier")
    verify.add_argument("--package", help="Workspace package to verify")
    verify.add_argument("--cairo-version", default="", help="Cairo compiler version")
    verify.add_argument("--scarb-version", default="", help="Scarb version")
    verify.add_argument("--dojo-version", help="Dojo version for Dojo projects")
    verify.add_argument("--build-tool", default="scarb", help="Build tool (default: scarb)")
    verify.add_argument("--batch-delay", type=float, help="Seconds between batch submissions")
    _flag(verify, "--watch", "Wait for the verification to finish")
    _flag(verify, "--notify", "Print a notice when a watched job finishes")

    status = commands.add_parser("status", help="Watch an existing job until it finishes")
    _add_network_arguments(status)
    status.add_argument("--job", required=True, help="Verification job id")
    _flag(status, "--notify", "Print a notice when the job finishes")

    check = commands.add_parser("check", help="Check whether a class already has verified sources")
    _add_network_arguments(check)
    check.add_argument("--class-hash", required=True, help="Declared class hash to look up")
    check.add_argument("--json", action="store_true", help="Print the lookup result as JSON")

    history = commands.add_parser("history", help="Inspect and maintain the local job history")
    history_commands = history.add_subparsers(dest="history_command", required=True)

    listing = history_commands.add_parser("list", help="List recorded jobs")
    listing.add_argument("--status", help="Status or group (success, failed, pending)")
    listing.add_argument("--network", help="Only jobs on this network")
    listing.add_argument("--job", help="Job id, or a job id prefix with --job-prefix")
    listing.add_argument("--job-prefix", action="store_true", help="Match --job as a prefix")
    listing.add_argument("--contract", help="Contract name substring")
    listing.add_argument("--class-hash", help="Class hash prefix")
    listing.add_argument("--since", type=date.fromisoformat, help="Created on or after YYYY-MM-DD")
    listing.add_argument("--before", type=date.fromisoformat, help="Created before YYYY-MM-DD")
    listing.add_argument("--after", type=date.fromisoformat, help="Created after YYYY-MM-DD")
    listing.add_argument("--limit", type=int, default=20, help="Maximum rows (default: 20)")
    listing.add_argument(
        "--sort",
        choices=[key.value for key in SortKey],
        default=SortKey.TIME.value,
        help="Sort key (default: time)",
    )
    listing.add_argument("--asc", action="store_true", help="Ascending order")

    show = history_commands.add_parser("status", help="Show one recorded job")
    _add_network_arguments(show)
    show.add_argument("--job", required=True, help="Verification job id")
    show.add_argument("--refresh", action="store_true", help="Poll the API once before showing")

    stats = history_commands.add_parser("stats", help="Summarise recorded jobs")
    stats.add_argument("--network", help="Only jobs on this network")

    clean = history_commands.add_parser("clean", help="Delete old records")
    clean.add_argument("--older-than", type=int, help="Delete records created more than N days ago")
    clean.add_argument("--status", help="Only records with this status or group")
    clean.add_argument("--network", help="Only records on this network")
    clean.add_argument("--all", action="store_true", dest="clean_all", help="Delete every record")
    clean.add_argument("--yes", action="store_true", help="Confirm --all")

    recheck = history_commands.add_parser("recheck", help="Poll every pending job again")
    _add_network_arguments(recheck)
    _flag(recheck, "--watch", "Watch pending jobs until they finish")
    _flag(recheck, "--notify", "Print a notice when a job finishes")

    return parser


def _open_store() -> HistoryStore | None:
    try:
        return open_history_store()
    except StorageError as exc:
        logger.warning("history database unavailable; continuing without local tracking: %s", exc)
        _err(f"[verifier] warning: history unavailable ({exc})")
        return None


def _build_poller(
    client: HttpVerificationClient | StatusRouter,
    store: HistoryStore | None,
    *,
    notify: bool,
    contract_names: dict[str, str] | None = None,
) -> StatusPoller:
    estimator = ProgressEstimator(store if store is not None else NoDurations())
    sink = ConsoleNotifier(contract_names) if notify else None
    return StatusPoller(client, store, estimator, sink=sink, poll_interval=POLL_INTERVAL_SECONDS)


class StatusRouter:
    """Sends each status request to the API of the network its job was submitted on."""

    def __init__(self, clients: dict[str, HttpVerificationClient]) -> None:
        self._clients = clients

    def get_status(self, job_id: str) -> RemoteJobStatus:
        return self._clients[job_id].get_status(job_id)


def _format_seconds(value: float | None) -> str:
    if value is None:
        return "-"
    minutes, seconds = divmod(int(round(value)), 60)
    return f"{minutes}m {seconds:02d}s" if minutes else f"{seconds}s"


def _format_time(value: datetime | None) -> str:
    return value.strftime(_TIME_FORMAT) if value is not None else "-"


def _print_snapshot(snapshot: ProgressSnapshot) -> None:
    _out(
        f"[{snapshot.job_id}] {snapshot.status.value:<13} {snapshot.percentage:>3}% "
        f"elapsed={_format_seconds(snapshot.elapsed_seconds)} "
        f"remaining~{_format_seconds(snapshot.estimated_remaining_seconds)}"
    )


def _print_tally(tally: BatchTally) -> None:
    _out(
        f"[batch] succeeded={tally.succeeded} failed={tally.failed} "
        f"pending={tally.pending} total={tally.total}"
    )


def _exit_code(result: WatchResult) -> int:
    if result.outcome is WatchOutcome.COMPLETED:
        return EXIT_SUCCESS if result.status is JobStatus.SUCCESS else EXIT_JOB_FAILED
    if result.outcome is WatchOutcome.TIMED_OUT:
        return EXIT_TIMED_OUT
    return EXIT_FATAL


def _report_watch(result: WatchResult) -> int:
    if result.outcome is WatchOutcome.COMPLETED:
        status = result.status.value if result.status else "unknown"
        _out(f"Job {result.job_id} finished: {status}")
        if result.message:
            _out(f"  message: {result.message}")
        if result.error_category:
            _out(f"  category: {result.error_category}")
    elif result.outcome is WatchOutcome.TIMED_OUT:
        _err(f"[verifier] {_timeout_text(result)}")
    elif result.outcome is WatchOutcome.CANCELLED:
        _err(
            f"[verifier] watch of job {result.job_id} cancelled; verification continues remotely. "
            f"Resume with: verifier status --job {result.job_id}"
        )
    else:
        _err(f"[verifier] polling failed: {result.error}")
    return _exit_code(result)


def _timeout_text(result: WatchResult) -> str:
    last = result.status.value if result.status else "unknown"
    return (
        f"timed out waiting for job {result.job_id} (last status: {last}); "
        f"check again with: verifier status --job {result.job_id}"
    )


def _resolve(args: argparse.Namespace) -> ResolvedConfig:
    settings = get_settings()
    cli = ConfigLayer(
        network=getattr(args, "network", None),
        url=getattr(args, "url", None),
        license=getattr(args, "license", None),
        watch=getattr(args, "watch", None),
        notify=getattr(args, "notify", None),
        verbose=getattr(args, "verbose", None),
        package=getattr(args, "package", None),
        batch_delay_seconds=getattr(args, "batch_delay", None),
    )
    file_layer = load_config_file(Path(getattr(args, "path", ".")))
    return merge_config(cli, file_layer, default_layer(settings))


def _client_for(config: ResolvedConfig) -> tuple[HttpVerificationClient, str]:
    try:
        base_url = resolve_api_url(config.network, config.url)
    except ValueError as exc:
        raise UsageError(str(exc)) from exc
    network = config.network or network_from_url(base_url)
    client = HttpVerificationClient(base_url=base_url, timeout_seconds=get_settings().api_timeout_seconds)
    return client, network


def _collect_files(project_dir: Path, names: Sequence[str]) -> dict[str, str]:
    if not names:
        raise UsageError("at least one --file is required")
    files: dict[str, str] = {}
    root = project_dir.resolve()
    for name in names:
        path = (root / name).resolve()
        try:
            relative = path.relative_to(root).as_posix()
        except ValueError as exc:
            raise UsageError(f"{name} is outside the project directory {root}") from exc
        try:
            files[relative] = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise UsageError(f"could not read {name}: {exc}") from exc
    return files


def _build_requests(args: argparse.Namespace, config: ResolvedConfig, network: str) -> list[SubmissionRequest]:
    files = _collect_files(Path(args.path), args.files)

    def request(class_hash: str, contract_name: str, package: str | None) -> SubmissionRequest:
        return SubmissionRequest(
            network=network,
            class_hash=class_hash,
            contract_name=contract_name,
            files=files,
            package=package,
            license=config.license,
            cairo_version=args.cairo_version,
            scarb_version=args.scarb_version,
            build_tool=args.build_tool,
            dojo_version=args.dojo_version,
            contract_file=args.contract_file,
        )

    if args.class_hash or args.contract_name:
        if not (args.class_hash and args.contract_name):
            raise UsageError("--class-hash and --contract-name must be given together")
        return [request(args.class_hash, args.contract_name, config.package)]
    if config.is_batch:
        return [
            request(entry.class_hash, entry.contract_name, entry.package or config.package)
            for entry in config.contracts
        ]
    raise UsageError("pass --class-hash and --contract-name, or list [[contracts]] in .voyager.toml")


def _cmd_verify(args: argparse.Namespace) -> int:
    config = _resolve(args)
    client, network = _client_for(config)
    requests = _build_requests(args, config, network)
    store = _open_store()
    submitter = JobSubmitter(client, store)
    names: dict[str, str] = {}

    if len(requests) == 1:
        handle = submitter.submit(requests[0])
        _out(f"Submitted verification job {handle.job_id} on {handle.network}")
        if not handle.tracked:
            _err(f"[verifier] job {handle.job_id} is not tracked locally; record the id to check it later")
        if not config.watch:
            _out(f"Check progress with: verifier status --job {handle.job_id} --network {handle.network}")
            return EXIT_SUCCESS
        names[handle.job_id] = requests[0].contract_name
        poller = _build_poller(client, store, notify=config.notify, contract_names=names)
        try:
            result = poller.watch(handle.job_id, handle.network, on_snapshot=_print_snapshot)
        except KeyboardInterrupt:
            _err(f"[verifier] interrupted; resume with: verifier status --job {handle.job_id}")
            return EXIT_FATAL
        return _report_watch(result)

    poller = _build_poller(client, store, notify=config.notify, contract_names=names)
    orchestrator = BatchOrchestrator(
        submitter,
        poller,
        delay_seconds=config.batch_delay_seconds,
        on_snapshot=_print_snapshot,
        on_tally=_print_tally,
    )
    _out(f"Submitting {len(requests)} contract(s) with {config.batch_delay_seconds:g}s between submissions")
    submissions = tuple(orchestrator.submit_all(requests))
    for outcome in submissions:
        if outcome.handle is not None:
            names[outcome.handle.job_id] = outcome.request.contract_name
            _out(f"  {outcome.request.contract_name}: job {outcome.handle.job_id}")
        elif outcome.skipped:
            _out(f"  {outcome.request.contract_name}: skipped")
        else:
            _out(f"  {outcome.request.contract_name}: failed ({outcome.error})")

    result = BatchResult(submissions=submissions)
    handles = [outcome.handle for outcome in submissions if outcome.handle is not None]
    if config.watch and handles:
        try:
            watched = orchestrator.watch_all(handles)
        except KeyboardInterrupt:
            orchestrator.stop()
            _err("[verifier] interrupted; jobs continue remotely. Resume with: verifier history recheck --watch")
            return EXIT_FATAL
        result = BatchResult(submissions=submissions, watches=watched.watches, tally=watched.tally)
        for watch in watched.watches.values():
            _report_watch(watch)
        _print_tally(watched.tally)

    return _batch_exit_code(result)


def _batch_exit_code(result: BatchResult) -> int:
    if result.all_succeeded:
        return EXIT_SUCCESS
    if any(outcome.error is not None for outcome in result.submissions):
        return EXIT_SUBMISSION_ERROR
    return max((_exit_code(watch) for watch in result.watches.values()), default=EXIT_SUCCESS)


def _cmd_status(args: argparse.Namespace) -> int:
    store = _open_store()
    tracked = None
    if store is not None:
        try:
            tracked = store.get(args.job)
        except StorageError as exc:
            logger.warning("could not read job %s from history: %s", args.job, exc)
    if args.network is None and args.url is None and tracked is not None:
        args.network = tracked.network
    config = _resolve(args)
    client, network = _client_for(config)

    names = {args.job: tracked.contract_name} if tracked is not None else {}
    poller = _build_poller(client, store, notify=config.notify, contract_names=names)
    try:
        result = poller.watch(args.job, network, on_snapshot=_print_snapshot)
    except KeyboardInterrupt:
        _err(f"[verifier] interrupted; resume with: verifier status --job {args.job}")
        return EXIT_FATAL
    return _report_watch(result)


def _print_class_info(info: ClassVerificationInfo) -> None:
    if not info.verified:
        _out(f"Class {info.class_hash} is not verified")
        return
    _out(f"Class {info.class_hash} is verified")
    if info.name:
        _out(f"  Name: {info.name}")
    if info.version:
        _out(f"  Version: {info.version}")
    if info.license:
        _out(f"  License: {info.license}")
    if info.contract_file:
        _out(f"  Contract file: {info.contract_file}")
    if info.verified_timestamp is not None:
        verified_at = datetime.fromtimestamp(info.verified_timestamp, tz=timezone.utc)
        _out(f"  Verified: {_format_time(verified_at)}")


def _cmd_check(args: argparse.Namespace) -> int:
    try:
        class_hash = validate_class_hash(args.class_hash)
    except InvalidClassHashError as exc:
        raise UsageError(str(exc)) from exc
    client, _ = _client_for(_resolve(args))

    try:
        info = client.check_class(class_hash)
    except ClassNotFoundError:
        _out(f"Class {class_hash} not found on-chain")
        return EXIT_CLASS_NOT_FOUND

    if args.json:
        _out(json.dumps(asdict(info), indent=2))
    else:
        _print_class_info(info)
    return EXIT_SUCCESS


def _print_job(job: VerificationJob, *, indent: str = "") -> None:
    _out(f"{indent}Contract: {job.contract_name}")
    _out(f"{indent}Class Hash: {job.class_hash}")
    _out(f"{indent}Network: {job.network}")
    _out(f"{indent}Status: {job.status.value}")
    _out(f"{indent}Submitted: {_format_time(job.created_at)}")
    if job.completed_at is not None:
        _out(f"{indent}Completed: {_format_time(job.completed_at)} ({_format_seconds(job.duration_seconds)})")
    if job.package:
        _out(f"{indent}Package: {job.package}")
    if job.cairo_version or job.scarb_version:
        _out(f"{indent}Cairo: {job.cairo_version or '-'} | Scarb: {job.scarb_version or '-'}")
    if job.dojo_version:
        _out(f"{indent}Dojo: {job.dojo_version}")
    if job.message:
        _out(f"{indent}Message: {job.message}")


def _status_filter(value: str | None) -> str | None:
    if value is not None:
        try:
            resolve_status_filter(value)
        except ValueError as exc:
            raise UsageError(str(exc)) from exc
    return value


def _cmd_history_list(args: argparse.Namespace, store: HistoryStore) -> int:
    filters = HistoryFilter(
        status=_status_filter(args.status),
        network=args.network,
        job_id=args.job,
        job_id_prefix=args.job_prefix,
        contract_name=args.contract,
        class_hash_prefix=args.class_hash,
        since=args.since,
        before=args.before,
        after=args.after,
        limit=args.limit,
        sort=SortKey(args.sort),
        descending=not args.asc,
    )
    jobs = store.query(filters).all()
    if not jobs:
        _out("No verification history found.")
        return EXIT_SUCCESS

    _out("Verification History")
    _out()
    for job in jobs:
        _out(f"Job ID: {job.job_id}")
        _print_job(job, indent="  ")
        _out()
    _out(f"Showing {len(jobs)} record(s)")
    return EXIT_SUCCESS


def _cmd_history_status(args: argparse.Namespace, store: HistoryStore) -> int:
    job = store.get(args.job)
    if job is None:
        _err(f"Job ID not found in local history: {args.job}")
        return EXIT_USAGE

    if args.refresh:
        if args.network is None and args.url is None:
            args.network = job.network
        client, network = _client_for(_resolve(args))
        poller = _build_poller(client, store, notify=False)
        snapshot, remote = poller.refresh(job.job_id, network)
        _out(f"Refreshed: {snapshot.status.value} ({snapshot.percentage}%)")
        if remote.status_description:
            _out(f"  {remote.status_description}")
        job = store.get(args.job) or job

    _out(f"Job ID: {job.job_id}")
    _print_job(job)
    updates = store.status_updates(job.job_id)
    if updates:
        _out("Transitions:")
        for update in updates:
            _out(f"  {_format_time(update.observed_at)}  {update.status.value}")
    return EXIT_SUCCESS


def _cmd_history_stats(args: argparse.Namespace, store: HistoryStore) -> int:
    stats = store.stats(HistoryFilter(network=args.network))
    _out("Verification History Statistics")
    _out()
    _out(f"Total verifications: {stats.total}")
    if stats.total:
        rate = (stats.success_rate or 0.0) * 100
        _out(f"  Successful: {stats.successful} ({rate:.1f}%)")
        _out(f"  Failed: {stats.failed}")
        _out(f"  Pending: {stats.pending}")
    if stats.average_duration_seconds is not None:
        _out(
            f"Duration: avg {_format_seconds(stats.average_duration_seconds)}, "
            f"min {_format_seconds(stats.min_duration_seconds)}, "
            f"max {_format_seconds(stats.max_duration_seconds)}"
        )
    for network, summary in stats.by_network.items():
        _out(f"  {network}: {summary.total} total, {summary.successful} successful, {summary.pending} pending")
    return EXIT_SUCCESS


def _cmd_history_clean(args: argparse.Namespace, store: HistoryStore) -> int:
    if args.clean_all:
        if not args.yes:
            raise UsageError("--all deletes every record; pass --yes to confirm")
        deleted = store.clean_all()
        _out(f"Deleted {deleted} record(s).")
        return EXIT_SUCCESS
    if args.older_than is None:
        raise UsageError("either --older-than or --all must be specified")
    try:
        deleted = store.clean(args.older_than, status=_status_filter(args.status), network=args.network)
    except ValueError as exc:
        raise UsageError(str(exc)) from exc
    _out(f"Deleted {deleted} record(s) older than {args.older_than} days.")
    return EXIT_SUCCESS


def _recheck_clients(args: argparse.Namespace, jobs: Sequence[VerificationJob]) -> dict[str, HttpVerificationClient]:
    timeout = get_settings().api_timeout_seconds
    by_url: dict[str, HttpVerificationClient] = {}
    clients: dict[str, HttpVerificationClient] = {}
    for job in jobs:
        try:
            base_url = resolve_api_url(job.network, args.url)
        except ValueError:
            _err(f"[verifier] skipping job {job.job_id}: no API url known for network {job.network!r} (use --url)")
            continue
        client = by_url.setdefault(base_url, HttpVerificationClient(base_url=base_url, timeout_seconds=timeout))
        clients[job.job_id] = client
    return clients


def _cmd_history_recheck(args: argparse.Namespace, store: HistoryStore) -> int:
    jobs = store.pending_jobs(args.network)
    if not jobs:
        _out("No pending verification jobs found.")
        return EXIT_SUCCESS

    clients = _recheck_clients(args, jobs)
    jobs = [job for job in jobs if job.job_id in clients]
    names = {job.job_id: job.contract_name for job in jobs}
    poller = _build_poller(StatusRouter(clients), store, notify=bool(args.notify), contract_names=names)
    _out(f"Re-checking {len(jobs)} pending job(s)...")

    if args.watch:
        orchestrator = BatchOrchestrator(
            None,
            poller,
            on_snapshot=_print_snapshot,
            on_tally=_print_tally,
        )
        try:
            result = orchestrator.watch_jobs((job.job_id, job.network) for job in jobs)
        except KeyboardInterrupt:
            orchestrator.stop()
            _err("[verifier] interrupted; pending jobs continue remotely")
            return EXIT_FATAL
        for watch in result.watches.values():
            _report_watch(watch)
        _print_tally(result.tally)
        return max((_exit_code(watch) for watch in result.watches.values()), default=EXIT_SUCCESS)

    updated = errors = 0
    for job in jobs:
        try:
            snapshot, _ = poller.refresh(job.job_id, job.network)
        except PollError as exc:
            errors += 1
            _out(f"  {job.job_id} ({job.contract_name}): error ({exc})")
            continue
        if snapshot.status is not job.status:
            updated += 1
        _out(f"  {job.job_id} ({job.contract_name}): {snapshot.status.value}")
    _out(f"Updated {updated} job(s).")
    return EXIT_FATAL if errors else EXIT_SUCCESS


_HISTORY_COMMANDS = {
    "list": _cmd_history_list,
    "status": _cmd_history_status,
    "stats": _cmd_history_stats,
    "clean": _cmd_history_clean,
    "recheck": _cmd_history_recheck,
}


def _cmd_history(args: argparse.Namespace) -> int:
    store = open_history_store()
    return _HISTORY_COMMANDS[args.history_command](args, store)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(bool(args.verbose))

    handlers = {
        "verify": _cmd_verify,
        "status": _cmd_status,
        "check": _cmd_check,
        "history": _cmd_history,
    }
    try:
        return handlers[args.command](args)
    except SubmissionError as exc:
        _err(f"[verifier] submission failed: {exc}")
        return EXIT_SUBMISSION_ERROR
    except PollError as exc:
        _err(f"[verifier] polling failed: {exc}")
        return EXIT_FATAL
    except ClassLookupError as exc:
        _err(f"[verifier] class lookup failed: {exc}")
        return EXIT_FATAL
    except (ConfigError, StorageError, UsageError) as exc:
        _err(f"[verifier] {exc}")
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
