"""CLI for noniid-entropy."""

from __future__ import annotations

import sys

import click

from noniid_entropy import __version__

# sysexits.h EX_DATAERR
EXIT_DATA_ERROR = 65


def _pair(value: str | None, name: str) -> tuple[int, int] | None:
    """Parse an ``A,B`` option into two non-negative integers."""
    if value is None:
        return None
    try:
        first, second = (int(part, 0) for part in value.split(","))
    except ValueError:
        raise click.BadParameter(f"expected two comma-separated integers, got {value!r}", param_hint=name)
    if first < 0 or second < 0:
        raise click.BadParameter("values must be non-negative", param_hint=name)
    return first, second


def _echo_err(lines: list[str]) -> None:
    for line in lines:
        click.echo(line, err=True)


@click.group()
@click.version_option(__version__)
def main() -> None:
    """SP 800-90B non-IID min-entropy estimation."""


# ────────────────────────────────────────────────────────────
# Assessment
# ────────────────────────────────────────────────────────────


@main.command()
@click.argument("input_file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("-v", "--verbose", count=True, help="Verbose mode (repeat for more detail).")
@click.option("--raw", "raw_eval", is_flag=True, help="Evaluate the literal symbols only.")
@click.option("--bitstring", "bitstring_eval", is_flag=True, help="Evaluate the bitstring expansion only.")
@click.option("--combined", "combined_eval", is_flag=True, help="Evaluate both (the default).")
@click.option("--subset", default=None, metavar="INDEX,COUNT", help="Only assess the INDEX-th run of COUNT samples.")
@click.option("--estimators", "mask", default=None, help="Bitmask of estimators to run (see 'estimators').")
@click.option("--little-endian", is_flag=True, help="Expand bitstrings from the low bit up.")
@click.option("--block-size", type=click.IntRange(min=0), default=None, help="Symbols per evaluation block.")
@click.option("--large-block", is_flag=True, help="Also assess the whole dataset as one block.")
@click.option("--full-plocal", is_flag=True, help="Always search P_local over its full range.")
@click.option("--width", type=click.Choice(["8", "32"]), default=None, help="Bits per sample in the input file.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML file of assessment settings.")
@click.option("--report", "report_path", default=None, help="Write a Markdown report to this path.")
@click.option("--random", "random_spec", default=None, metavar="K,L",
              help="Assess L uniform symbols from an alphabet of K instead of a file.")
@click.option("--seed", type=int, default=None, help="Seed for --random.")
def assess(
    input_file: str | None,
    verbose: int,
    raw_eval: bool,
    bitstring_eval: bool,
    combined_eval: bool,
    subset: str | None,
    mask: str | None,
    little_endian: bool,
    block_size: int | None,
    large_block: bool,
    full_plocal: bool,
    width: str | None,
    config_path: str | None,
    report_path: str | None,
    random_spec: str | None,
    seed: int | None,
) -> None:
    """Assess the min entropy of INPUT_FILE, a stream of unsigned samples."""
    from noniid_entropy.assessment import assess as run, load_samples, random_samples
    from noniid_entropy.config import AssessmentConfig, configure_logging, load_config
    from noniid_entropy.numeric import NumericError
    from noniid_entropy.report import format_result, generate_markdown_report

    if (input_file is None) == (random_spec is None):
        raise click.UsageError("give exactly one of INPUT_FILE or --random K,L")

    chosen = [name for name, flag in (("raw", raw_eval), ("bitstring", bitstring_eval), ("combined", combined_eval))
              if flag]
    if len(chosen) > 1:
        raise click.UsageError("--raw, --bitstring and --combined are mutually exclusive")

    # unset flags leave the config file's value in place
    overrides = {
        "evaluation": chosen[0] if chosen else None,
        "little_endian": little_endian or None,
        "block_size": block_size,
        "large_block": large_block or None,
        "full_plocal_search": full_plocal or None,
        "sample_width": int(width) if width else None,
    }
    if mask is not None:
        try:
            overrides["estimators"] = int(mask, 0)
        except ValueError:
            raise click.BadParameter(f"not an integer: {mask!r}", param_hint="--estimators")

    try:
        config = load_config(config_path) if config_path else AssessmentConfig()
        values = config.to_dict()
        values.update({key: value for key, value in overrides.items() if value is not None})
        values["verbose"] = max(verbose, config.verbose)
        config = AssessmentConfig(**values)
    except ValueError as e:
        raise click.UsageError(str(e))
    configure_logging(config.verbose)

    k = None
    if random_spec is not None:
        k, length = _pair(random_spec, "--random")
        try:
            data = random_samples(k, length, seed)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--random")
        source = f"random (k={k}, L={length}, seed={seed})"
    else:
        index, count = _pair(subset, "--subset") or (0, 0)
        try:
            data = load_samples(input_file, config.sample_width, index, count)
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        source = input_file

    try:
        result = run(data, config, k=k)
    except NumericError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_DATA_ERROR)

    if result.degenerate:
        click.echo(f"Assessed min entropy = {0.0:.17g}\n")
    else:
        blocks = result.blocks
        for block in blocks:
            click.echo(f"Results for block {block.index}" if len(blocks) > 1 else "Results for sole block", err=True)
            minimum = float("inf")
            if block.literal is not None:
                _echo_err(format_result(block.literal, config.verbose))
                click.echo(f"H_original = {block.h_original:.17g}")
                minimum = block.h_original
            if block.bitstring is not None:
                _echo_err(format_result(block.bitstring, config.verbose))
                click.echo(f"H_bitstring = {block.h_bitstring:.17g}")
                minimum = min(minimum, result.bit_width * block.h_bitstring)
            click.echo(f"Assessed min entropy = {minimum:.17g}\n")

        large = result.large_block
        if large is not None:
            click.echo("Results for Large Block Assessment", err=True)
            if large.literal is not None:
                _echo_err(format_result(large.literal, config.verbose))
                click.echo(f"Large Block Assessment H_original = {large.h_original:.17g}", err=True)
            if large.bitstring is not None:
                _echo_err(format_result(large.bitstring, config.verbose))
                click.echo(f"Large Block Assessment H_bitstring = {large.h_bitstring:.17g}", err=True)
            click.echo(f"Large Block Assessment min entropy = {large.min_entropy:.17g}\n")
            click.echo(f"Final Assessment = {large.min_entropy:.17g}")

    if report_path:
        generate_markdown_report(result, report_path, source=source)
        click.echo(f"Report saved to: {report_path}", err=True)


# ────────────────────────────────────────────────────────────
# Single estimators
# ────────────────────────────────────────────────────────────


@main.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option("-v", "--verbose", count=True, help="Verbose mode (repeat for more detail).")
@click.option("-p", "--cutoff", type=click.FloatRange(0.0, 1.0, max_open=True), default=0.0,
              help="The lowest probability for a symbol to be considered relevant.")
@click.option("--no-confidence", is_flag=True, help="Use the raw probability estimates without confidence intervals.")
@click.option("--width", type=click.Choice(["8", "32"]), default="8", help="Bits per sample in the input file.")
def markov(input_file: str, verbose: int, cutoff: float, no_confidence: bool, width: str) -> None:
    """Run the NSA Markov estimate over INPUT_FILE."""
    from noniid_entropy.assessment import load_samples, translate
    from noniid_entropy.config import AssessmentConfig, configure_logging
    from noniid_entropy.estimators import nsa_markov_estimate
    from noniid_entropy.numeric import NumericError

    configure_logging(verbose)
    config = AssessmentConfig(verbose=verbose, markov_confidence=not no_confidence, markov_cutoff=cutoff)
    try:
        data = load_samples(input_file, int(width))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Read in {len(data)} integers")

    symbols, k = translate(data)
    if k < 2:
        click.echo(f"Assessed min entropy = {0.0:.17g}")
        return
    click.echo("Running markov test.", err=True)
    try:
        result = nsa_markov_estimate(symbols, k, config)
    except NumericError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_DATA_ERROR)
    click.echo(f"Assessed min entropy = {result.entropy:.17g}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option("-v", "--verbose", count=True, help="Verbose mode (repeat for more detail).")
@click.option("--width", type=click.Choice(["8", "32"]), default="8", help="Bits per sample in the input file.")
def shannon(input_file: str, verbose: int, width: str) -> None:
    """Estimate the Shannon entropy of INPUT_FILE (plug-in estimate)."""
    from noniid_entropy.assessment import load_samples, translate
    from noniid_entropy.config import configure_logging
    from noniid_entropy.estimators import shannon_entropy_estimate

    configure_logging(verbose)
    try:
        data = load_samples(input_file, int(width))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    symbols, k = translate(data)
    click.echo(f"Assessed Shannon entropy = {shannon_entropy_estimate(symbols, k):.17g}")


@main.command()
def estimators() -> None:
    """List the estimator bitmask values accepted by --estimators."""
    from noniid_entropy.config import DEFAULT_ESTIMATORS, Estimator

    for est in Estimator:
        default = "default" if est & DEFAULT_ESTIMATORS else "opt-in"
        click.echo(f"  {int(est):#06x}  {est.name:<12} {default}")
    click.echo(f"\nDefault mask: {int(DEFAULT_ESTIMATORS):#x}")


if __name__ == "__main__":
    main()
