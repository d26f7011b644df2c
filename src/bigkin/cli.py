"""bigkin command-line interface.

Typer-based CLI over PLINK binary filesets:

- bigkin kernel: write the reference (and query) kernel matrices
- bigkin pca: write principal component scores of every individual
- bigkin gblup: write gBLUP predictions for the query individuals

Reference sets are read from a text file of individual IDs (IID, or
FID IID per line). Every command writes a <prefix>.log.txt run summary.
"""

import sys
import time
from pathlib import Path
from typing import Annotated

import numpy as np
import typer

import bigkin
from bigkin.core import DEFAULT_BLOCK_SIZE, OutputConfig
from bigkin.errors import BigkinError, ConfigurationError
from bigkin.gblup import compute_gblup
from bigkin.io import (
    BedGenotypeStore,
    read_fam_phenotypes,
    write_predictions,
    write_scores,
)
from bigkin.kernel import compute_kernel, write_kernel_matrix
from bigkin.pca import compute_pca
from bigkin.utils.logging import setup_logging, write_run_log

app = typer.Typer(
    name="bigkin",
    help="bigkin: blocked genomic kernels, PCA and gBLUP for large genotype data.",
    add_completion=False,
)

# Store global options set by callback
_global_config: OutputConfig | None = None

BfileOption = Annotated[
    Path,
    typer.Option("-bfile", help="PLINK binary file prefix"),
]
BlockSizeOption = Annotated[
    int,
    typer.Option("-bs", "--block-size", help="Loci read at once (default: 1000)"),
]
WorkersOption = Annotated[
    int,
    typer.Option("-nt", "--workers", help="Worker threads for kernel accumulation"),
]
NativeOption = Annotated[
    bool,
    typer.Option(
        "--native/--blas",
        help="Kernel update with JAX (default) or the system BLAS",
    ),
]
ThresholdOption = Annotated[
    float,
    typer.Option("-thr", help="Keep eigenvalues above thr x number of loci"),
]
CheckMemoryOption = Annotated[
    bool,
    typer.Option(
        "--check-memory/--no-check-memory",
        help="Enable/disable pre-flight memory check (default: enabled)",
    ),
]
ProgressOption = Annotated[
    bool,
    typer.Option("--progress/--no-progress", help="Show a progress bar"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from bigkin.core import get_jax_info

        typer.echo(f"bigkin version {bigkin.__version__}")
        info = get_jax_info()
        typer.echo(
            f"JAX {info['version']} ({info['backend']}), "
            f"x64={info['x64_enabled']}"
        )
        raise typer.Exit()


@app.callback()
def main(
    outdir: Annotated[
        Path,
        typer.Option("-outdir", help="Output directory"),
    ] = Path("output"),
    output: Annotated[
        str,
        typer.Option("-o", help="Output file prefix"),
    ] = "result",
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Verbose output"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """bigkin: out-of-core genomic kernels."""
    global _global_config
    _global_config = OutputConfig(outdir=outdir, prefix=output, verbose=verbose)
    setup_logging(verbose=verbose)


def _output_config() -> OutputConfig:
    global _global_config
    if _global_config is None:
        _global_config = OutputConfig()
    _global_config.ensure_outdir()
    return _global_config


def _open_store(bfile: Path) -> BedGenotypeStore:
    for ext in (".bed", ".bim", ".fam"):
        path = Path(f"{bfile}{ext}")
        if not path.exists():
            typer.echo(f"Error: PLINK {ext} file not found: {path}", err=True)
            raise typer.Exit(code=1)
    try:
        return BedGenotypeStore(bfile)
    except Exception as e:
        typer.echo(f"Error loading PLINK data: {e}", err=True)
        raise typer.Exit(code=1) from None


def read_reference_ids(path: Path, iid: np.ndarray) -> np.ndarray:
    """Map a file of individual IDs to row indices of the fileset.

    Each non-empty line holds either an IID or "FID IID" (PLINK keep-file
    layout). Row indices are returned in file order.

    Raises:
        ConfigurationError: If an ID is not present in the fileset.
    """
    rows = {str(name): i for i, name in enumerate(iid)}
    indices = []
    for line in Path(path).read_text().splitlines():
        fields = line.split()
        if not fields:
            continue
        name = fields[1] if len(fields) > 1 else fields[0]
        if name not in rows:
            raise ConfigurationError(f"Reference ID {name!r} not found in .fam file")
        indices.append(rows[name])
    return np.asarray(indices, dtype=np.intp)


def _fail(e: Exception) -> typer.Exit:
    typer.echo(f"Error: {e}", err=True)
    return typer.Exit(code=1)


@app.command("kernel")
def kernel_command(
    bfile: BfileOption,
    reference_file: Annotated[
        Path | None,
        typer.Option("-ref", help="File of reference IIDs (default: everyone)"),
    ] = None,
    block_size: BlockSizeOption = DEFAULT_BLOCK_SIZE,
    n_workers: WorkersOption = 1,
    use_native: NativeOption = True,
    check_memory: CheckMemoryOption = True,
    show_progress: ProgressOption = True,
) -> None:
    """Compute the reference (and query) kernel matrices.

    Writes <prefix>.kref.txt and, with a reference subset, <prefix>.kqry.txt
    (rows: query individuals, columns: reference individuals).
    """
    start_time = time.perf_counter()
    config = _output_config()
    command_line = " ".join(sys.argv)

    with _open_store(bfile) as store:
        try:
            reference = (
                read_reference_ids(reference_file, store.iid)
                if reference_file is not None
                else None
            )
            kernels = compute_kernel(
                store,
                reference=reference,
                block_size=block_size,
                use_native=use_native,
                n_workers=n_workers,
                check_memory=check_memory,
                show_progress=show_progress,
            )
        except (BigkinError, MemoryError) as e:
            raise _fail(e) from None
        kernel_time = time.perf_counter() - start_time

    kref_path = config.output_path("kref.txt")
    write_kernel_matrix(kernels.reference, kref_path)
    typer.echo(f"Reference kernel written to {kref_path}")
    params = {
        "n_individuals": kernels.partition.n_individuals,
        "n_reference": kernels.partition.n_reference,
        "n_query": kernels.partition.n_query,
        "n_loci": kernels.n_loci,
        "block_size": block_size,
        "update_routine": "jax" if use_native else "blas",
        "kref_file": str(kref_path),
    }
    if kernels.query is not None:
        kqry_path = config.output_path("kqry.txt")
        write_kernel_matrix(kernels.query, kqry_path)
        typer.echo(f"Query kernel written to {kqry_path}")
        params["kqry_file"] = str(kqry_path)

    timing = {"kernel": kernel_time, "total": time.perf_counter() - start_time}
    log_path = write_run_log(config, params, timing, command_line)
    typer.echo(f"Log written to {log_path}")


@app.command("pca")
def pca_command(
    bfile: BfileOption,
    n_components: Annotated[
        int | None,
        typer.Option("-k", help="Number of components (default: all)"),
    ] = None,
    reference_file: Annotated[
        Path | None,
        typer.Option("-ref", help="File of reference IIDs (default: everyone)"),
    ] = None,
    threshold: ThresholdOption = 1e-3,
    block_size: BlockSizeOption = DEFAULT_BLOCK_SIZE,
    n_workers: WorkersOption = 1,
    use_native: NativeOption = True,
    check_memory: CheckMemoryOption = True,
    show_progress: ProgressOption = True,
) -> None:
    """Compute principal component scores.

    Components are learnt from the reference individuals; the others are
    projected. Writes <prefix>.pcs.txt (IID followed by one score per
    component).
    """
    start_time = time.perf_counter()
    config = _output_config()
    command_line = " ".join(sys.argv)

    with _open_store(bfile) as store:
        try:
            reference = (
                read_reference_ids(reference_file, store.iid)
                if reference_file is not None
                else None
            )
            scores = compute_pca(
                store,
                block_size=block_size,
                k=n_components,
                reference=reference,
                threshold=threshold,
                use_native=use_native,
                n_workers=n_workers,
                check_memory=check_memory,
                show_progress=show_progress,
            )
        except (BigkinError, MemoryError) as e:
            raise _fail(e) from None
        iid = store.iid
        n_loci = store.n_loci

    scores_path = config.output_path("pcs.txt")
    write_scores(scores, scores_path, iid=iid)
    typer.echo(f"{scores.shape[1]} components written to {scores_path}")

    params = {
        "n_individuals": scores.shape[0],
        "n_reference": len(reference) if reference is not None else scores.shape[0],
        "n_loci": n_loci,
        "k_requested": n_components if n_components is not None else "all",
        "n_components": scores.shape[1],
        "threshold": threshold,
        "block_size": block_size,
        "update_routine": "jax" if use_native else "blas",
        "scores_file": str(scores_path),
    }
    timing = {"total": time.perf_counter() - start_time}
    log_path = write_run_log(config, params, timing, command_line)
    typer.echo(f"Log written to {log_path}")


@app.command("gblup")
def gblup_command(
    bfile: BfileOption,
    reference_file: Annotated[
        Path,
        typer.Option("-ref", help="File of training IIDs (phenotypes from .fam)"),
    ],
    zero_missing: Annotated[
        bool,
        typer.Option(
            "--zero-missing",
            help="Treat .fam phenotype 0 as missing (case/control coding)",
        ),
    ] = False,
    threshold: ThresholdOption = 1e-3,
    block_size: BlockSizeOption = DEFAULT_BLOCK_SIZE,
    n_workers: WorkersOption = 1,
    use_native: NativeOption = True,
    check_memory: CheckMemoryOption = True,
    show_progress: ProgressOption = True,
) -> None:
    """Predict phenotypes of non-reference individuals by gBLUP.

    Training phenotypes are the sixth .fam column of the reference
    individuals (-9/NA = missing, not allowed in the reference set). A 0
    phenotype is a value unless --zero-missing is given.
    Writes <prefix>.pred.txt (IID and prediction per query individual).
    """
    start_time = time.perf_counter()
    config = _output_config()
    command_line = " ".join(sys.argv)

    with _open_store(bfile) as store:
        try:
            reference = read_reference_ids(reference_file, store.iid)
            phenotypes = read_fam_phenotypes(bfile, zero_missing=zero_missing)
            predictions = compute_gblup(
                store,
                phenotypes,
                reference,
                block_size=block_size,
                threshold=threshold,
                use_native=use_native,
                n_workers=n_workers,
                check_memory=check_memory,
                show_progress=show_progress,
            )
        except (BigkinError, MemoryError) as e:
            raise _fail(e) from None
        in_reference = np.zeros(store.n_individuals, dtype=bool)
        in_reference[reference] = True
        query_iid = store.iid[~in_reference]
        n_loci = store.n_loci

    pred_path = config.output_path("pred.txt")
    write_predictions(predictions, pred_path, iid=query_iid)
    typer.echo(f"{len(predictions)} predictions written to {pred_path}")

    params = {
        "n_reference": len(reference),
        "n_query": len(predictions),
        "n_loci": n_loci,
        "threshold": threshold,
        "zero_missing": zero_missing,
        "block_size": block_size,
        "update_routine": "jax" if use_native else "blas",
        "predictions_file": str(pred_path),
    }
    timing = {"total": time.perf_counter() - start_time}
    log_path = write_run_log(config, params, timing, command_line)
    typer.echo(f"Log written to {log_path}")


if __name__ == "__main__":
    app()
