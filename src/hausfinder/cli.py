"""Command-line interface for hausfinder."""

import argparse
import concurrent.futures
import csv
import inspect
import logging
import os
import sys
import threading
import time
from typing import Callable, List, Optional, TextIO

import tqdm

from . import __version__, config
from .imaging import ImageLoadError
from .models import MatchReport, MatchTask, Offset, SearchResult
from .qc import MatchPlotter
from .session import MatchSession

log = logging.getLogger(__name__)

INTERACTIVE_HELP = (
    "Commands:\n"
    "  f        find the best pose (Ctrl-C stops it early)\n"
    "  p X Y    preview the needle at offset (X, Y)\n"
    "  q        quit"
)


def configure_matplotlib_backend():
    """QC figures are only written to disk, so a non-GUI backend is enough."""
    import matplotlib

    try:
        matplotlib.use("Agg")
        log.debug("Using 'Agg' matplotlib backend.")
    except ImportError:
        log.error("Failed to import 'Agg' matplotlib backend.")


def create_parser() -> argparse.ArgumentParser:
    """Creates the argument parser for the CLI."""
    os.environ["COLUMNS"] = "80"
    parser = argparse.ArgumentParser(
        description="Locate a needle shape inside a haystack image by "
        "Hausdorff distance of their edges.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "needle_path",
        nargs="?",
        metavar="NEEDLE",
        help="Image of the shape to search for.",
    )
    parser.add_argument(
        "haystack_path",
        nargs="?",
        metavar="HAYSTACK",
        help="Image to search the shape in.",
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--find",
        action="store_true",
        help="Search for the best pose once and exit.",
    )
    mode_group.add_argument(
        "--preview",
        type=int,
        nargs=2,
        metavar=("X", "Y"),
        help="Evaluate the unwarped needle at one offset and exit.",
    )
    mode_group.add_argument(
        "--batch-csv",
        metavar="FILE",
        help="CSV file with 'needle' and 'haystack' columns for batch processing.",
    )

    parser.add_argument(
        "--initial-step",
        type=int,
        default=config.INITIAL_TRANSLATION_STEP,
        metavar="PX",
        help="Initial translation step of the coarse-to-fine search.",
    )
    parser.add_argument(
        "--min-rotation",
        type=float,
        default=config.MIN_ROTATION,
        metavar="DEG",
        help="Smallest needle rotation to try.",
    )
    parser.add_argument(
        "--max-rotation",
        type=float,
        default=config.MAX_ROTATION,
        metavar="DEG",
        help="Largest needle rotation to try.",
    )
    parser.add_argument(
        "--rotation-step",
        type=float,
        default=config.ROTATION_STEP,
        metavar="DEG",
        help="Rotation increment.",
    )
    parser.add_argument(
        "--min-scale",
        type=float,
        default=config.MIN_SCALE,
        metavar="FACTOR",
        help="Smallest needle scale to try.",
    )
    parser.add_argument(
        "--max-scale",
        type=float,
        default=config.MAX_SCALE,
        metavar="FACTOR",
        help="Largest needle scale to try.",
    )
    parser.add_argument(
        "--scale-step",
        type=float,
        default=config.SCALE_STEP,
        metavar="FACTOR",
        help="Scale increment.",
    )
    parser.add_argument(
        "--canny-low",
        type=int,
        default=config.CANNY_LOW_THRESHOLD,
        metavar="T",
        help="Lower hysteresis threshold of the edge detector.",
    )
    parser.add_argument(
        "--canny-high",
        type=int,
        default=config.CANNY_HIGH_THRESHOLD,
        metavar="T",
        help="Upper hysteresis threshold of the edge detector.",
    )
    parser.add_argument(
        "--distance-metric",
        choices=config.DISTANCE_METRICS,
        default=config.DISTANCE_METRIC,
        help="Metric of the distance transform.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        metavar="N",
        help="Pose candidates searched concurrently.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Stop the pose sweep after this long and report the best so far.",
    )
    parser.add_argument(
        "--qc-out-dir",
        type=str,
        default=config.QC_OUT_DIR,
        metavar="DIR",
        help="Output directory for QC plots.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def _task_overrides(args: argparse.Namespace) -> dict:
    """Task settings taken from the CLI, keyed by MatchTask field name."""
    return {
        kk: getattr(args, kk)
        for kk in inspect.get_annotations(MatchTask)
        if kk not in ("needle_path", "haystack_path", "row_num") and hasattr(args, kk)
    }


def build_task(args: argparse.Namespace) -> MatchTask:
    return MatchTask(
        needle_path=args.needle_path,
        haystack_path=args.haystack_path,
        **_task_overrides(args),
    )


def prepare_batch_tasks(args: argparse.Namespace) -> List[MatchTask]:
    """Reads CSV and prepares a list of MatchTask objects."""
    log.info(f"Reading batch tasks from: {args.batch_csv}")
    tasks: List[MatchTask] = []
    required_headers = ["needle", "haystack"]
    task_annot = dict(
        filter(
            lambda x: (x[0] not in ("needle_path", "haystack_path", "row_num"))
            and (x[1] in [str, bool, int, float]),
            inspect.get_annotations(MatchTask).items(),
        )
    )
    # Optional fields; a blank CSV cell falls back to the CLI arg
    task_annot["timeout"] = float
    task_annot["qc_out_dir"] = str
    try:
        with open(args.batch_csv, mode="r", encoding="utf-8-sig") as infile:
            reader = csv.DictReader(infile)
            if not reader.fieldnames:
                raise ValueError("CSV file appears to be empty or has no header.")
            # replace all - with _ in the header
            reader.fieldnames = [f.strip().replace("-", "_") for f in reader.fieldnames]
            missing = [h for h in required_headers if h not in reader.fieldnames]
            if missing:
                raise ValueError(f"CSV missing required headers: {', '.join(missing)}")

            for i, row in enumerate(reader):
                row_num = i + 2
                try:
                    kwargs = {
                        "needle_path": row["needle"].strip(),
                        "haystack_path": row["haystack"].strip(),
                    }
                    if not kwargs["needle_path"] or not kwargs["haystack_path"]:
                        raise ValueError("empty image path")
                    for kk, caster in task_annot.items():
                        val_from_arg = getattr(args, kk)
                        val_from_csv = row.get(kk)

                        if val_from_csv is not None and val_from_csv.strip() != "":
                            kwargs[kk] = caster(val_from_csv.strip())
                        else:
                            kwargs[kk] = val_from_arg
                    if kwargs["distance_metric"] not in config.DISTANCE_METRICS:
                        raise ValueError(
                            f"unknown distance metric {kwargs['distance_metric']!r}"
                        )
                    kwargs["row_num"] = row_num
                    tasks.append(MatchTask(**kwargs))
                except (ValueError, TypeError, KeyError, AttributeError) as ve:
                    log.warning(
                        f"Skipping CSV row {row_num} due to invalid value: {ve}. Row: {row}"
                    )
                    continue
        log.info(f"Prepared {len(tasks)} tasks from CSV file.")
        return tasks
    except FileNotFoundError:
        log.error(f"Batch CSV file not found: {args.batch_csv}")
        raise
    except Exception as e:
        log.error(f"Failed to read or parse CSV file {args.batch_csv}: {e}")
        raise


def describe_result(result: SearchResult) -> str:
    if result.found:
        pose = result.pose
        text = (
            f"found at ({pose.offset.dx}, {pose.offset.dy}), rotation {pose.rotation:g}, "
            f"scale {pose.scale:g}, dist = {result.score:.2f}"
        )
    else:
        text = "no match (no valid comparison was possible)"
    if result.cancelled:
        text += " (search stopped early)"
    return text


def _wait_for(future: concurrent.futures.Future) -> SearchResult:
    # poll with a timeout so Ctrl-C reaches the main thread on every platform
    while True:
        try:
            return future.result(timeout=0.1)
        except concurrent.futures.TimeoutError:
            continue


def find_interruptible(
    session: MatchSession,
    task: MatchTask,
    cancel: Optional[threading.Event] = None,
    progress: bool = False,
) -> SearchResult:
    """
    Runs `session.find` in a worker thread so that Ctrl-C stops the sweep.

    The interrupt sets `cancel`; the search then returns the best result seen
    so far with `cancelled=True` instead of tearing down the caller.
    """
    if cancel is None:
        cancel = threading.Event()
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(session.find, task, cancel, progress)
        try:
            return _wait_for(future)
        except KeyboardInterrupt:
            log.warning("Interrupted, stopping the search")
            cancel.set()
            return future.result()


def _plot(plotter: MatchPlotter, session, result, label) -> Optional[str]:
    if plotter.out_dir is None:
        return None
    plotter.plot_match(session, result, label)
    paths = plotter.save_figures()
    return str(paths[0]) if paths else None


def _pair_label(task: MatchTask) -> str:
    needle = os.path.splitext(os.path.basename(task.needle_path))[0]
    haystack = os.path.splitext(os.path.basename(task.haystack_path))[0]
    return f"{needle}_in_{haystack}"


def run_task(task: MatchTask) -> MatchReport:
    """Executes a single search task and returns the report."""
    start = time.perf_counter()
    try:
        log.info(f"Processing pair: {task.needle_path} in {task.haystack_path}")
        session = MatchSession.from_task(task)
        result = session.find(task)
        qc_path = _plot(MatchPlotter(task.qc_out_dir), session, result, _pair_label(task))
        return MatchReport(
            needle_path=task.needle_path,
            haystack_path=task.haystack_path,
            success=result.found,
            message=describe_result(result),
            result=result,
            duration=time.perf_counter() - start,
            qc_plot_path=qc_path,
            row_num=task.row_num,
        )
    except Exception as e:
        log.error(
            f"Failed to process pair {task.needle_path} in {task.haystack_path}: {e}",
            exc_info=not isinstance(e, ImageLoadError),
        )
        return MatchReport(
            needle_path=task.needle_path,
            haystack_path=task.haystack_path,
            success=False,
            message=str(e),
            duration=time.perf_counter() - start,
            row_num=task.row_num,
        )


def report_summary(
    successful_reports: List[MatchReport],
    failed_reports: List[MatchReport],
    duration: float,
):
    """Prints the final summary to the console."""
    total_tasks = len(successful_reports) + len(failed_reports)
    print("\n--- Processing Summary ---")
    print(f"Total tasks attempted: {total_tasks}")
    print(f"Successful tasks: {len(successful_reports)}")
    print(f"Failed tasks: {len(failed_reports)}")
    for report in successful_reports:
        print(f"  - {report.needle_path} in {report.haystack_path}: {report.message}")
    if failed_reports:
        print("\nFailures occurred:", file=sys.stderr)
        failed_reports.sort(
            key=lambda r: r.row_num if r.row_num is not None else float("inf")
        )
        error_msgs = []
        for report in failed_reports:
            row_info = f"(CSV Row {report.row_num})" if report.row_num else ""
            msg = f"{report.needle_path} in {report.haystack_path} {row_info}: {report.message}"
            error_msgs.append(msg)
            print(f"  - {msg}", file=sys.stderr)
        log.warning("Failures occurred:")
        for msg in error_msgs:
            log.warning(msg)
    print(f"\nTotal execution time: {duration:.2f} seconds")


def run_interactive(
    session: MatchSession,
    task: MatchTask,
    read_line: Callable[[str], str] = input,
    out: TextIO = sys.stdout,
):
    """Reads commands until `q` or end of input."""
    plotter = MatchPlotter(task.qc_out_dir)
    label = _pair_label(task)
    print(INTERACTIVE_HELP, file=out)

    result = session.evaluate(Offset(0, 0))
    print(f"\tPreview (0, 0): dist = {result.score:.2f}", file=out)

    while True:
        try:
            line = read_line("> ")
        except EOFError:
            break
        parts = line.split()
        if not parts:
            continue
        command = parts[0].lower()
        if command == "q":
            break
        if command == "f":
            print("\tFinding best pose...", file=out)
            start = time.perf_counter()
            result = find_interruptible(session, task)
            print(f"\t{describe_result(result)}", file=out)
            print(f"\tSearch took {time.perf_counter() - start:.2f} secs", file=out)
            _plot(plotter, session, result, f"{label}-best")
        elif command == "p" and len(parts) == 3:
            try:
                offset = Offset(int(parts[1]), int(parts[2]))
            except ValueError:
                print("\tOffsets must be integers, e.g. 'p 10 20'", file=out)
                continue
            result = session.evaluate(offset)
            print(
                f"\tPreview ({offset.dx}, {offset.dy}): dist = {result.score:.2f}",
                file=out,
            )
            _plot(plotter, session, result, f"{label}-preview")
        else:
            print(INTERACTIVE_HELP, file=out)


def run_batch(args: argparse.Namespace) -> int:
    successful_reports: List[MatchReport] = []
    failed_reports: List[MatchReport] = []
    start_time = time.time()

    tasks = prepare_batch_tasks(args)
    if not tasks:
        log.info("No tasks to process. Exiting.")
    else:
        log.info(f"Starting processing for {len(tasks)} task(s).")
        for task in tqdm.tqdm(tasks, desc="Processing Tasks"):
            report = run_task(task)
            if report.success:
                successful_reports.append(report)
            else:
                failed_reports.append(report)

    duration = time.time() - start_time
    report_summary(successful_reports, failed_reports, duration)
    return 1 if failed_reports else 0


def run_single(args: argparse.Namespace) -> int:
    task = build_task(args)
    try:
        session = MatchSession.from_task(task)
    except ImageLoadError as e:
        log.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.preview is not None:
        result = session.evaluate(Offset(*args.preview))
        print(f"Preview ({args.preview[0]}, {args.preview[1]}): dist = {result.score:.2f}")
        _plot(MatchPlotter(task.qc_out_dir), session, result, f"{_pair_label(task)}-preview")
    elif args.find:
        result = find_interruptible(session, task, progress=True)
        print(describe_result(result))
        _plot(MatchPlotter(task.qc_out_dir), session, result, f"{_pair_label(task)}-best")
    else:
        run_interactive(session, task)
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.batch_csv is None and (args.needle_path is None or args.haystack_path is None):
        parser.error("NEEDLE and HAYSTACK are required unless --batch-csv is given.")

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    configure_matplotlib_backend()

    try:
        if args.batch_csv:
            exit_code = run_batch(args)
        else:
            exit_code = run_single(args)
    except Exception as e:
        log.critical(f"A critical error occurred: {e}", exc_info=True)
        print(f"\nError: A critical error occurred: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
