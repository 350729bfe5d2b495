"""Chunked, resumable parameter sweeps.

Runs run_simulation() over every row of a parameter grid and gathers the
terminal states into one table.

Execution model:
  - The whole grid is validated before any generation runs.
  - Rows already present in persisted chunk files are skipped; the
    remaining work is the set difference requested \\ completed on full
    parameter tuples, never on row positions.
  - Pending rows are split into chunks. Chunks run on one bounded
    multiprocessing pool that lives for the whole sweep. Each chunk is
    written atomically to its own file, named by a hash of the chunk's
    parameter tuples, before the next chunk starts. An interruption
    loses at most the chunk in flight.
  - With trajectory recording on, each chunk's per-generation SR
    trajectories go to trajectories/trajectory_<hash>.csv first.
  - The canonical result file is rebuilt from all chunk files, one row
    per requested parameter combination in grid order.

Rows whose frequency vectors cannot be renormalized are recorded with
status='failed' and do not stop the sweep.
"""

from __future__ import annotations

import contextlib
import logging
import os
import time
from multiprocessing import Pool
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
import pandas as pd

from srdrive.config import (
    InvalidParameterError,
    SweepConfig,
    build_parameter_grid,
    validate_grid,
)
from srdrive.dynamics import NormalizationError
from srdrive.genetics import ZygoteTables
from srdrive.model import (
    EXTINCTION_THRESHOLD,
    FIXATION_THRESHOLD,
    PARAMETER_COLUMNS,
    SimulationParameters,
    run_simulation,
)
from srdrive.types import GENOTYPE_COLUMNS
from srdrive.utils import keys_hash

logger = logging.getLogger(__name__)

RESULT_COLUMNS = (
    PARAMETER_COLUMNS
    + GENOTYPE_COLUMNS
    + ['prop_SR', 'generation', 'termination', 'status', 'error']
)
CHUNK_DIRNAME = "chunks"
CHUNK_GLOB = "chunk_*.csv"
TRAJECTORY_COLUMNS = PARAMETER_COLUMNS + ['t', 'prop_SR']
TRAJECTORY_DIRNAME = "trajectories"
TRAJECTORY_GLOB = "trajectory_*.csv"

Key = Tuple


# ═══════════════════════════════════════════════════════════════════════
# WORKER
# ═══════════════════════════════════════════════════════════════════════

# Per-process zygote-table memo; each pool worker builds its own.
_WORKER_TABLES: Optional[ZygoteTables] = None


def _worker_tables() -> ZygoteTables:
    global _WORKER_TABLES
    if _WORKER_TABLES is None:
        _WORKER_TABLES = ZygoteTables()
    return _WORKER_TABLES


def run_row(args) -> Tuple[Key, Dict[str, Any], Optional[np.ndarray]]:
    """Run a single parameter row.

    Designed to be called from a multiprocessing pool.

    Args:
        args: tuple (params, fixation_threshold, extinction_threshold,
            record_trajectory)

    Returns:
        (parameter key, flat result record with status and error fields,
        SR trajectory or None)
    """
    params, fixation_threshold, extinction_threshold, record_trajectory = args
    try:
        result = run_simulation(
            params,
            tables=_worker_tables(),
            record_trajectory=record_trajectory,
            fixation_threshold=fixation_threshold,
            extinction_threshold=extinction_threshold,
        )
    except NormalizationError as e:
        record = params.to_dict()
        for name in GENOTYPE_COLUMNS:
            record[name] = np.nan
        record.update(
            prop_SR=np.nan, generation=None, termination=None,
            status='failed', error=f"{type(e).__name__}: {str(e)[:200]}",
        )
        return params.key(), record, None

    record = result.to_row()
    record.update(status='ok', error=None)
    return params.key(), record, result.trajectory


# ═══════════════════════════════════════════════════════════════════════
# TABLE I/O
# ═══════════════════════════════════════════════════════════════════════

def _coerce_result_dtypes(df: pd.DataFrame) -> pd.DataFrame:
    """Fix column dtypes so tables read back from disk compare equal."""
    df = df.reindex(columns=RESULT_COLUMNS)
    df['generations'] = df['generations'].astype('int64')
    for name in PARAMETER_COLUMNS[1:] + GENOTYPE_COLUMNS + ['prop_SR']:
        df[name] = df[name].astype('float64')
    df['generation'] = df['generation'].astype('Int64')
    for name in ('termination', 'status', 'error'):
        df[name] = pd.Series(
            [None if pd.isna(v) else v for v in df[name]],
            index=df.index, dtype=object,
        )
    return df


def read_results(path: Union[str, Path]) -> pd.DataFrame:
    """Read a chunk or canonical result table with exact float round-trip."""
    df = pd.read_csv(path, float_precision='round_trip')
    return _coerce_result_dtypes(df)


def read_trajectories(output_dir: Union[str, Path]) -> pd.DataFrame:
    """All persisted SR trajectories of a sweep as one long table.

    Only rows computed while trajectory recording was enabled appear.
    """
    trajectory_dir = Path(output_dir) / TRAJECTORY_DIRNAME
    frames = [
        pd.read_csv(p, float_precision='round_trip')
        for p in sorted(trajectory_dir.glob(TRAJECTORY_GLOB))
    ]
    if not frames:
        return pd.DataFrame(columns=TRAJECTORY_COLUMNS)
    return pd.concat(frames, ignore_index=True)[TRAJECTORY_COLUMNS]


def _write_atomic(df: pd.DataFrame, path: Path) -> None:
    """Write a CSV via a temporary file so readers never see partial rows.

    The temporary file is fsynced before the rename, so a chunk that is
    visible under its final name is also on disk.
    """
    tmp = path.with_name(path.name + '.tmp')
    with open(tmp, 'w', newline='') as f:
        df.to_csv(f, index=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def frame_keys(df: pd.DataFrame) -> List[Key]:
    """Parameter tuples of every row of a parameter or result table."""
    return [
        SimulationParameters.from_mapping(dict(zip(PARAMETER_COLUMNS, values))).key()
        for values in df[PARAMETER_COLUMNS].itertuples(index=False, name=None)
    ]


def grid_to_parameters(
    grid: Union[pd.DataFrame, Iterable[Union[SimulationParameters, Dict[str, Any]]]],
) -> List[SimulationParameters]:
    """Normalize a parameter grid into a list of SimulationParameters.

    Mapping rows must name every parameter; defaults are never filled in.

    Raises:
        InvalidParameterError: If a DataFrame grid lacks parameter columns
            or a mapping row lacks parameter names.
    """
    if isinstance(grid, pd.DataFrame):
        missing = [c for c in PARAMETER_COLUMNS if c not in grid.columns]
        if missing:
            raise InvalidParameterError(
                [f"parameter grid is missing columns: {missing}"])
        return [
            SimulationParameters.from_mapping(dict(zip(PARAMETER_COLUMNS, values)))
            for values in grid[PARAMETER_COLUMNS].itertuples(index=False, name=None)
        ]
    rows = []
    violations = []
    for i, item in enumerate(grid):
        if isinstance(item, SimulationParameters):
            rows.append(item)
            continue
        missing = [c for c in PARAMETER_COLUMNS if c not in item]
        if missing:
            violations.append(f"row {i}: missing parameters {missing}")
            continue
        rows.append(SimulationParameters.from_mapping(item))
    if violations:
        raise InvalidParameterError(violations)
    return rows


# ═══════════════════════════════════════════════════════════════════════
# RECONCILIATION
# ═══════════════════════════════════════════════════════════════════════

def load_completed_keys(chunk_dir: Union[str, Path]) -> Set[Key]:
    """Parameter tuples already persisted in chunk files."""
    chunk_dir = Path(chunk_dir)
    completed: Set[Key] = set()
    if not chunk_dir.is_dir():
        return completed
    for path in sorted(chunk_dir.glob(CHUNK_GLOB)):
        completed.update(frame_keys(read_results(path)))
    return completed


def pending_rows(
    rows: Sequence[SimulationParameters],
    completed: Set[Key],
) -> List[SimulationParameters]:
    """Rows whose parameter tuple is not yet completed, deduplicated, in grid order."""
    seen = set(completed)
    pending = []
    for params in rows:
        key = params.key()
        if key in seen:
            continue
        seen.add(key)
        pending.append(params)
    return pending


def chunk_rows(
    rows: Sequence[SimulationParameters],
    chunk_size: int,
) -> Iterator[List[SimulationParameters]]:
    """Split rows into consecutive chunks of at most chunk_size."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    for start in range(0, len(rows), chunk_size):
        yield list(rows[start:start + chunk_size])


def _chunk_digest(chunk: Sequence[SimulationParameters]) -> str:
    return keys_hash(p.key() for p in chunk)[:16]


def chunk_path(chunk_dir: Path, chunk: Sequence[SimulationParameters]) -> Path:
    """Deterministic, unique file name for a chunk."""
    return chunk_dir / f"chunk_{_chunk_digest(chunk)}.csv"


def trajectory_path(trajectory_dir: Path, chunk: Sequence[SimulationParameters]) -> Path:
    """Trajectory file belonging to a chunk (same digest as its chunk file)."""
    return trajectory_dir / f"trajectory_{_chunk_digest(chunk)}.csv"


# ═══════════════════════════════════════════════════════════════════════
# EXECUTION
# ═══════════════════════════════════════════════════════════════════════

def _trajectory_frame(results) -> pd.DataFrame:
    """Long table: parameter columns, generation t and prop_SR at t."""
    frames = []
    for _, record, trajectory in results:
        if trajectory is None:
            continue
        df = pd.DataFrame({'t': np.arange(len(trajectory)), 'prop_SR': trajectory})
        for name in reversed(PARAMETER_COLUMNS):
            df.insert(0, name, record[name])
        frames.append(df)
    if not frames:
        return pd.DataFrame(columns=TRAJECTORY_COLUMNS)
    return pd.concat(frames, ignore_index=True)[TRAJECTORY_COLUMNS]


def run_chunk(
    chunk: Sequence[SimulationParameters],
    chunk_dir: Union[str, Path],
    pool=None,
    fixation_threshold: float = FIXATION_THRESHOLD,
    extinction_threshold: float = EXTINCTION_THRESHOLD,
    trajectory_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Run every row of a chunk and persist the sub-table.

    Args:
        chunk: Parameter rows to run.
        chunk_dir: Directory for the chunk file.
        pool: Optional multiprocessing pool shared across chunks
            (None = run in-process).
        fixation_threshold: Upper terminal SR frequency.
        extinction_threshold: Lower terminal SR frequency.
        trajectory_dir: If given, per-generation SR trajectories of the
            chunk are written there before the chunk file.

    Returns:
        Path of the written chunk file.
    """
    chunk_dir = Path(chunk_dir)
    chunk_dir.mkdir(parents=True, exist_ok=True)
    record_trajectory = trajectory_dir is not None
    work = [(p, fixation_threshold, extinction_threshold, record_trajectory)
            for p in chunk]

    if pool is not None and len(work) > 1:
        results = list(pool.imap_unordered(run_row, work))
    else:
        results = [run_row(w) for w in work]

    order = {p.key(): i for i, p in enumerate(chunk)}
    results.sort(key=lambda item: order[item[0]])

    if record_trajectory:
        trajectory_dir = Path(trajectory_dir)
        trajectory_dir.mkdir(parents=True, exist_ok=True)
        _write_atomic(_trajectory_frame(results), trajectory_path(trajectory_dir, chunk))

    df = pd.DataFrame([record for _, record, _ in results], columns=RESULT_COLUMNS)
    path = chunk_path(chunk_dir, chunk)
    _write_atomic(df, path)
    return path


def collect_chunks(
    chunk_dir: Union[str, Path],
    requested: Sequence[Key],
) -> pd.DataFrame:
    """Concatenate chunk files into one row per requested key, in request order."""
    chunk_dir = Path(chunk_dir)
    frames = [read_results(p) for p in sorted(chunk_dir.glob(CHUNK_GLOB))]
    if not frames:
        return _coerce_result_dtypes(pd.DataFrame(columns=RESULT_COLUMNS))

    df = pd.concat(frames, ignore_index=True)
    position = {key: i for i, key in enumerate(requested)}
    df['_order'] = [position.get(key, -1) for key in frame_keys(df)]
    df = df[df['_order'] >= 0].drop_duplicates('_order', keep='first')
    df = df.sort_values('_order', kind='stable').drop(columns='_order')
    return _coerce_result_dtypes(df.reset_index(drop=True))


def _canonical_is_complete(path: Path, requested: Sequence[Key]) -> bool:
    if not path.exists():
        return False
    keys = frame_keys(read_results(path))
    return keys == list(requested)


def run_sweep(
    grid: Union[pd.DataFrame, Iterable[SimulationParameters]],
    output_dir: Union[str, Path],
    chunk_size: int = 500,
    n_workers: int = 1,
    results_file: str = "sweep_results.csv",
    fixation_threshold: float = FIXATION_THRESHOLD,
    extinction_threshold: float = EXTINCTION_THRESHOLD,
    max_chunks: Optional[int] = None,
    record_trajectory: bool = False,
) -> pd.DataFrame:
    """Run a parameter sweep, resuming from any persisted chunks.

    Args:
        grid: Parameter table (PARAMETER_COLUMNS) or SimulationParameters rows.
        output_dir: Directory for chunk files and the canonical table.
        chunk_size: Rows per persisted chunk.
        n_workers: Worker processes, one pool for the whole sweep
            (1 = run in-process).
        results_file: Canonical result file name inside output_dir.
        fixation_threshold: Upper terminal SR frequency.
        extinction_threshold: Lower terminal SR frequency.
        max_chunks: Stop after this many new chunks (None = run to completion).
        record_trajectory: Persist per-generation SR trajectories of newly
            computed rows under output_dir/trajectories (see
            read_trajectories()).

    Returns:
        Result table with one row per requested parameter combination, in
        grid order. If stopped early by max_chunks, the rows completed so
        far (the canonical file is not written).

    Raises:
        InvalidParameterError: If any grid row is outside its domain.
    """
    rows = grid_to_parameters(grid)
    validate_grid(rows)
    requested = [p.key() for p in pending_rows(rows, set())]

    output_dir = Path(output_dir)
    chunk_dir = output_dir / CHUNK_DIRNAME
    canonical = output_dir / results_file
    chunk_dir.mkdir(parents=True, exist_ok=True)

    if _canonical_is_complete(canonical, requested):
        logger.info("Sweep already complete: %s (%d rows)", canonical, len(requested))
        return read_results(canonical)

    completed = load_completed_keys(chunk_dir)
    pending = pending_rows(rows, completed)
    chunks = list(chunk_rows(pending, chunk_size))
    logger.info(
        "Sweep: %d requested, %d already completed, %d pending in %d chunks "
        "(chunk_size=%d, workers=%d)",
        len(requested), len(requested) - len(pending), len(pending),
        len(chunks), chunk_size, n_workers,
    )

    trajectory_dir = output_dir / TRAJECTORY_DIRNAME if record_trajectory else None
    n_run = len(chunks) if max_chunks is None else min(len(chunks), max_chunks)
    use_pool = n_workers > 1 and any(len(c) > 1 for c in chunks[:n_run])

    t0 = time.time()
    n_done = 0
    # One pool for every chunk so worker zygote-table memos persist
    with (Pool(n_workers) if use_pool else contextlib.nullcontext()) as pool:
        for i, chunk in enumerate(chunks):
            if max_chunks is not None and i >= max_chunks:
                logger.info("Stopping after %d chunks; %d rows still pending",
                            i, len(pending) - n_done)
                return collect_chunks(chunk_dir, requested)

            path = run_chunk(
                chunk, chunk_dir, pool=pool,
                fixation_threshold=fixation_threshold,
                extinction_threshold=extinction_threshold,
                trajectory_dir=trajectory_dir,
            )
            n_done += len(chunk)
            elapsed = time.time() - t0
            rate = n_done / elapsed if elapsed > 0 else float('inf')
            eta = (len(pending) - n_done) / rate if rate > 0 else 0.0
            logger.info(
                "  chunk %d/%d -> %s: %d/%d rows, %.0fs elapsed, %.1f rows/s, ETA %.0fs",
                i + 1, len(chunks), path.name, n_done, len(pending), elapsed, rate, eta,
            )

    results = collect_chunks(chunk_dir, requested)
    n_failed = int((results['status'] == 'failed').sum())
    if n_failed:
        logger.warning("%d/%d rows failed normalization", n_failed, len(results))

    _write_atomic(results, canonical)
    logger.info("Saved: %s (%d rows)", canonical, len(results))
    return read_results(canonical)


def run_sweep_from_config(
    config: SweepConfig,
    grid: Optional[pd.DataFrame] = None,
    max_chunks: Optional[int] = None,
) -> pd.DataFrame:
    """run_sweep() with grid, thresholds and chunking taken from a config."""
    if grid is None:
        grid = build_parameter_grid(config)
    sw = config.sweep
    return run_sweep(
        grid,
        output_dir=sw.output_dir,
        chunk_size=sw.chunk_size,
        n_workers=sw.n_workers,
        results_file=sw.results_file,
        fixation_threshold=config.simulation.fixation_threshold,
        extinction_threshold=config.simulation.extinction_threshold,
        max_chunks=max_chunks,
        record_trajectory=config.simulation.record_trajectory,
    )
