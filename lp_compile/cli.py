"""
Command-line interface for lp-compile.

Usage:
    lp-compile diet.json -o diet.lp
    lp-compile diet.json -p prices.json --set foods.bread.cost=2.5
"""

import logging
from typing import Optional

import click

from lp_compile import __version__
from lp_compile.compiler import define
from lp_compile.config import CompilerConfig
from lp_compile.errors import CompileError
from lp_compile.loader import load_model
from lp_compile.parameters import (
    apply_overrides,
    as_arrays,
    load_parameters,
    parse_override,
)


@click.command()
@click.argument("model_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--params",
    "-p",
    "params_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON parameter table merged over the model's own parameters",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    metavar="PATH=VALUE",
    help="Override one parameter by dotted path (repeatable)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    help="Output file path (stdout if not specified)",
)
@click.option(
    "--big-m-slack",
    type=float,
    default=1.0,
    show_default=True,
    help="Multiplier applied to big-M constants",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Compile and report model statistics without writing LP text",
)
@click.option("--verbose", is_flag=True, help="Log compilation details")
@click.version_option(version=__version__)
def main(
    model_file: str,
    params_file: Optional[str],
    overrides: tuple[str, ...],
    output: Optional[str],
    big_m_slack: float,
    dry_run: bool,
    verbose: bool,
) -> None:
    """
    Compile a JSON optimization model into CPLEX LP format.

    Examples:

        lp-compile diet.json -o diet.lp

        lp-compile diet.json -p prices.json --set budget=120

        lp-compile diet.json --dry-run
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        document = load_model(model_file)
        parameters = dict(document.parameters)
        if params_file:
            parameters.update(load_parameters(params_file))
        if overrides:
            parameters = apply_overrides(
                parameters, dict(parse_override(o) for o in overrides)
            )
        config = CompilerConfig(big_m_slack=big_m_slack)
    except (ValueError, KeyError) as e:
        raise click.ClickException(str(e))

    click.echo(
        f"Compiling {len(document.statements)} statement(s) "
        f"with {len(parameters)} parameter(s)...",
        err=True,
    )

    try:
        compiler = define(
            document.statements, as_arrays(parameters), document.name, config
        )
    except CompileError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")

    stats = compiler.model.statistics()
    click.echo(
        f"Model has {stats['variables']} variable(s) "
        f"({stats['auxiliary']} auxiliary), "
        f"{stats['constraints']} constraint(s)",
        err=True,
    )

    if dry_run:
        click.echo("\nModel statistics:")
        for key, value in stats.items():
            click.echo(f"  {key}: {value}")
        return

    text = compiler.to_lp()
    if output:
        with open(output, "w") as f:
            f.write(text)
        click.echo(f"Written to {output}", err=True)
    else:
        click.echo(text, nl=False)


if __name__ == "__main__":
    main()
