"""Text and Markdown rendering of assessment results."""

from __future__ import annotations

import math
import platform
from datetime import datetime
from pathlib import Path

from noniid_entropy import __version__
from noniid_entropy.assessment import Assessment, BlockAssessment, EntropyTestingResult
from noniid_entropy.predictors import PredictorResult


def _g(x: float) -> str:
    return f"{x:.17g}"


def _predictor_lines(label: str, name: str, r: PredictorResult, verbose: int) -> list[str]:
    prefix = f"{label} {name} Estimate:"
    lines = []
    if verbose > 0:
        lines += [
            f"{prefix} C = {r.correct}",
            f"{prefix} r = {r.runs}",
            f"{prefix} N = {r.n}",
            f"{prefix} P_global = {_g(r.p_global)}",
            f"{prefix} P_global' = {_g(r.p_global_bound)}",
        ]
        if verbose > 2:
            lines.append(f"{prefix} P_run = {_g(r.p_run)}")
        if r.p_local >= 0.0:
            lines.append(f"{prefix} P_local = {_g(r.p_local)}")
        else:
            lines.append(f"{prefix} P_local can't change the result.")
    lines.append(f"{prefix} min entropy = {_g(r.entropy)}")
    if verbose > 1:
        lines.append(f"Test took {_g(r.run_time)} s CPU time")
    return lines


def format_result(result: EntropyTestingResult, verbose: int = 0) -> list[str]:
    """Render one :class:`EntropyTestingResult` as diagnostic lines.

    Only estimators that ran are listed. ``verbose > 0`` adds the
    intermediate statistics, ``verbose > 1`` the CPU time per estimator and
    ``verbose > 2`` the run-length bound of the predictors.
    """
    label = result.label
    lines: list[str] = []

    def timing(run_time: float) -> None:
        if verbose > 1:
            lines.append(f"Test took {_g(run_time)} s CPU time")

    mcv = result.mcv
    if mcv.done:
        p = f"{label} Most Common Value Estimate:"
        if verbose > 0:
            lines += [f"{p} Mode count = {mcv.max_count}", f"{p} p-hat = {_g(mcv.phat)}", f"{p} p_u = {_g(mcv.pu)}"]
        lines.append(f"{p} min entropy = {_g(mcv.entropy)}")
        timing(mcv.run_time)

    col = result.collision
    if col.done:
        p = f"{label} Collision Estimate:"
        if verbose > 0:
            lines += [
                f"{p} v = {col.v}",
                f"{p} Sum t_i = {col.t_sum}",
                f"{p} X-bar = {_g(col.mean)}",
                f"{p} sigma-hat = {_g(col.stddev)}",
                f"{p} X-bar' = {_g(col.meanbound)}",
                f"{p} p = {_g(col.p)}",
            ]
        lines.append(f"{p} min entropy = {_g(col.entropy)}")
        timing(col.run_time)

    mk = result.markov
    if mk.done:
        p = f"{label} Markov Estimate:"
        if verbose > 0:
            lines += [f"{p} P_0 = {_g(mk.p0)}", f"{p} P_1 = {_g(mk.p1)}"]
            for i in range(2):
                for j in range(2):
                    lines.append(f"{p} P_{{{i},{j}}} = {_g(mk.transitions[i][j])}")
            lines.append(f"{p} p-hat_max = {_g(mk.phatmax)}")
        lines.append(f"{p} min entropy = {_g(mk.entropy)}")
        timing(mk.run_time)

    comp = result.compression
    if comp.done:
        p = f"{label} Compression Estimate:"
        if verbose > 0:
            lines += [
                f"{p} X-bar = {_g(comp.mean)}",
                f"{p} sigma-hat = {_g(comp.stddev)}",
                f"{p} X-bar' = {_g(comp.meanbound)}",
                f"{p} p = {_g(comp.p)}",
            ]
        lines.append(f"{p} min entropy = {_g(comp.entropy)}")
        timing(comp.run_time)

    sa = result.sa
    if sa.done:
        tp = f"{label} t-Tuple Estimate:"
        lp = f"{label} LRS Estimate:"
        if verbose > 0:
            lines.append(f"{tp} t = {sa.u - 1}" if sa.u > 1 else f"{tp} t does not exist")
            if sa.t_tuple_pmax > 0.0:
                lines += [f"{tp} p-hat_max = {_g(sa.t_tuple_pmax)}", f"{tp} p_u = {_g(sa.t_tuple_pu)}"]
            else:
                lines.append(f"{tp} No strings of suitable length. Unable to run.")
        if sa.v < sa.u:
            lines.append(f"{lp} Can't run LRS test as v<u")
        elif verbose > 0:
            lines += [
                f"{lp} u = {sa.u}",
                f"{lp} v = {sa.v}",
                f"{lp} p-hat = {_g(sa.lrs_pmax)}",
                f"{lp} p_u = {_g(sa.lrs_pu)}",
            ]
    if sa.t_tuple_done:
        lines.append(f"{label} t-Tuple Estimate: min entropy = {_g(sa.t_tuple_entropy)}")
    if sa.lrs_done:
        lines.append(f"{label} LRS Estimate: min entropy = {_g(sa.lrs_entropy)}")
    if sa.done:
        timing(sa.run_time)

    for name, pred in (
        ("MultiMCW Prediction", result.mcw),
        ("Lag Prediction", result.lag),
        ("MultiMMC Prediction", result.mmc),
        ("LZ78Y Prediction", result.lz78y),
    ):
        if pred.done:
            lines += _predictor_lines(label, name, pred, verbose)

    nsa = result.nsa_markov
    if nsa.done:
        p = f"{label} NSA Markov Estimate:"
        if verbose > 0:
            lines += [
                f"{p} symbols considered = {nsa.valid_symbols}",
                f"{p} samples considered = {nsa.valid_count}",
                f"{p} epsilon = {_g(nsa.epsilon)}",
                f"{p} p = {_g(nsa.p)}",
            ]
        lines.append(f"{p} min entropy = {_g(nsa.entropy)}")
        timing(nsa.run_time)

    return lines


# ─── Markdown ───


def _cell(x: float | None) -> str:
    if x is None:
        return "n/a"
    if math.isinf(x):
        return "∞"
    return f"{x:.6f}"


def _estimate_table(result: EntropyTestingResult) -> list[str]:
    lines = [
        f"#### {result.label} ({result.length:,} symbols, k = {result.k})",
        "",
        "| Estimator | Min entropy | CPU time (s) |",
        "|-----------|-------------|--------------|",
    ]
    times = {
        "Most Common Value": result.mcv.run_time,
        "Collision": result.collision.run_time,
        "Markov": result.markov.run_time,
        "Compression": result.compression.run_time,
        "t-Tuple": result.sa.run_time,
        "LRS": result.sa.run_time,
        "MultiMCW Prediction": result.mcw.run_time,
        "Lag Prediction": result.lag.run_time,
        "MultiMMC Prediction": result.mmc.run_time,
        "LZ78Y Prediction": result.lz78y.run_time,
        "NSA Markov": result.nsa_markov.run_time,
    }
    floor = result.assessed_entropy
    for name, entropy in result.estimates():
        mark = " ⬅" if entropy == floor else ""
        lines.append(f"| {name}{mark} | {_cell(entropy)} | {times[name]:.3f} |")
    lines.append("")
    return lines


def _block_section(title: str, block: BlockAssessment) -> list[str]:
    lines = [f"### {title}", ""]
    summary = []
    if block.h_original is not None:
        summary.append(f"**H_original:** {_cell(block.h_original)}")
    if block.h_bitstring is not None:
        summary.append(f"**H_bitstring:** {_cell(block.h_bitstring)}")
    summary.append(f"**Min entropy:** {_cell(block.min_entropy)}")
    lines.append(" | ".join(summary))
    lines.append("")
    for result in (block.literal, block.bitstring):
        if result is not None:
            lines += _estimate_table(result)
    return lines


def generate_markdown_report(
    assessment: Assessment,
    output_path: str | Path | None = None,
    source: str = "",
) -> str:
    """Render a Markdown summary of ``assessment``; write it when ``output_path`` is given."""
    now = datetime.now()
    lines = [
        "# Non-IID Min-Entropy Assessment",
        "",
        f"**Generated:** {now.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Machine:** {platform.node()} ({platform.machine()}, {platform.system()} {platform.release()})",
        f"**Python:** {platform.python_version()} | **noniid-entropy:** {__version__}",
    ]
    if source:
        lines.append(f"**Source:** `{source}`")
    lines += [
        "",
        "## Summary",
        "",
        "| Samples | Symbols (k) | Bit width | Evaluation | Block size | Blocks | Min entropy |",
        "|---------|-------------|-----------|------------|------------|--------|-------------|",
        f"| {assessment.length:,} | {assessment.k} | {assessment.bit_width} | {assessment.evaluation} "
        f"| {assessment.block_size:,} | {len(assessment.blocks)} | {_cell(assessment.min_entropy)} |",
        "",
    ]

    if assessment.degenerate:
        lines += ["Fewer than two distinct symbols: the sample cannot contain entropy.", ""]

    if len(assessment.blocks) > 1:
        lines += [
            "## Blocks",
            "",
            "| Block | H_original | H_bitstring | Min entropy |",
            "|-------|------------|-------------|-------------|",
        ]
        for block in assessment.blocks:
            lines.append(
                f"| {block.index} | {_cell(block.h_original)} | {_cell(block.h_bitstring)} "
                f"| {_cell(block.min_entropy)} |"
            )
        lines.append("")

    if assessment.blocks or assessment.large_block:
        lines += ["---", "", "## Detailed Results", ""]
    if assessment.large_block is not None:
        lines += _block_section("Large Block Assessment", assessment.large_block)
    for block in assessment.blocks:
        title = f"Block {block.index}" if len(assessment.blocks) > 1 else "Sole block"
        lines += _block_section(title, block)

    report = "\n".join(lines)

    if output_path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(report, encoding="utf-8")

    return report
