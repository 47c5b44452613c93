"""
spell_vm.cli.main
-----------------

Command-line front end for the spell toolchain.

Every PROGRAM argument may be spell source text, raw bytecode, or bytecode as
hex text; the kind is detected from the file contents.

Examples
--------
# Compile a spell to bytecode
spell-vm compile fireball.spell --out fireball.splc

# Show canonical source and an offset listing
spell-vm inspect fireball.splc --listing

# Check a program against an actor profile (or a bare catalogue JSON)
spell-vm check fireball.splc --profile player-1.json

# Run the repeat section with 40 energy, as JSON
spell-vm run fireball.splc --section repeat --energy 40 --json

# Maximum energy per section
spell-vm estimate fireball.spell --profile player-1.json
"""

from __future__ import annotations

import json
import logging
import string
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer

from ..catalogue import Catalogue, check_allowed
from ..compiler import compile_source
from ..compiler.encode import MAGIC, decode_program, disassemble, listing
from ..compiler.energy_estimator import estimate_energy, format_estimate
from ..errors import SpellError
from ..runtime.efficiency import EfficiencyTable
from ..runtime.engine import run as run_section
from ..store import ActorProfile, load_profile
from ..version import __version__

app = typer.Typer(
    name="spell-vm",
    add_completion=False,
    no_args_is_help=True,
    help="Compile, inspect, check and run spells.",
)

log = logging.getLogger("spell_vm.cli")

# -------------------- utils --------------------


def _fail(msg: str, code: int = 2) -> NoReturn:
    typer.echo(msg, err=True)
    raise typer.Exit(code)


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, sort_keys=True))


def _load_bytecode(path: Path) -> bytes:
    """Read `path` as bytecode, hex-encoded bytecode, or source to compile."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        _fail(f"cannot read {path}: {e}")
    if raw.startswith(MAGIC):
        return raw
    text = raw.decode("utf-8", errors="replace")
    compact = "".join(text.split())
    if compact and all(c in string.hexdigits for c in compact) and len(compact) % 2 == 0:
        blob = bytes.fromhex(compact)
        if blob.startswith(MAGIC):
            return blob
    res = compile_source(text)
    if res.bytecode is None:
        _fail(f"{path}: {res.error_message}", code=1)
    log.debug("compiled %s on the fly", path)
    return res.bytecode


def _load_profile(path: Optional[Path]) -> Optional[ActorProfile]:
    """Accept a full actor profile or a bare catalogue mapping."""
    if path is None:
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        _fail(f"cannot load profile {path}: {e}")
    try:
        if isinstance(data, dict) and "actor" in data:
            return load_profile(path)
        return ActorProfile(actor=path.stem, catalogue=Catalogue.from_dict(data))
    except SpellError as e:
        _fail(f"invalid profile {path}: {e}")


def _efficiency(profile: Optional[ActorProfile]) -> EfficiencyTable:
    return profile.efficiency if profile is not None else EfficiencyTable()


# -------------------- commands --------------------


@app.command("compile")
def cmd_compile(
    source: Path = typer.Argument(..., help="Spell source file."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write raw bytecode here."),
    hex_out: bool = typer.Option(False, "--hex", help="Print bytecode as hex."),
    json_out: bool = typer.Option(False, "--json", help="Output the compile result as JSON."),
) -> None:
    """
    Compile spell source to bytecode. Exit code 1 on a compile error.
    """
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"cannot read {source}: {e}")
    res = compile_source(text)
    if json_out:
        _echo_json(res.to_dict())
    elif not res.successful:
        typer.echo(f"{source}: {res.error_message}", err=True)
    if res.bytecode is None:
        raise typer.Exit(1)
    if out is not None:
        out.write_bytes(res.bytecode)
        if not json_out:
            typer.echo(f"wrote {len(res.bytecode)} bytes to {out}")
    if hex_out and not json_out:
        typer.echo(res.bytecode.hex())


@app.command("inspect")
def cmd_inspect(
    program: Path = typer.Argument(..., help="Bytecode (raw or hex) or source."),
    show_listing: bool = typer.Option(False, "--listing", help="Offset-annotated instruction listing."),
) -> None:
    """
    Decode a program and print its canonical source form.
    """
    bytecode = _load_bytecode(program)
    try:
        typer.echo(listing(bytecode) if show_listing else disassemble(bytecode).rstrip("\n"))
    except SpellError as e:
        _fail(str(e), code=1)


@app.command("check")
def cmd_check(
    program: Path = typer.Argument(..., help="Bytecode (raw or hex) or source."),
    profile: Path = typer.Option(..., "--profile", "-p", help="Actor profile or catalogue JSON."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """
    Check whether the actor may cast the program. Exit code 1 when denied.
    """
    bytecode = _load_bytecode(program)
    prof = _load_profile(profile)
    if prof is None:
        _fail("--profile is required")
    result = check_allowed(prof.catalogue, bytecode)
    if json_out:
        _echo_json(result.to_dict())
    elif result.allowed_to_cast:
        typer.echo(f"allowed: {prof.actor} may cast {program.name}")
    else:
        typer.echo(f"denied: {result.denial_reason}")
    if not result.allowed_to_cast:
        raise typer.Exit(1)


@app.command("run")
def cmd_run(
    program: Path = typer.Argument(..., help="Bytecode (raw or hex) or source."),
    section: str = typer.Option("repeat", "--section", "-s", help="on_creation / when_created / repeat."),
    energy: float = typer.Option(100.0, "--energy", "-e", min=0.0, help="Starting energy."),
    profile: Optional[Path] = typer.Option(None, "--profile", "-p", help="Actor profile for efficiency levels."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """
    Run one section with no host handlers and report what would be invoked.
    """
    bytecode = _load_bytecode(program)
    prof = _load_profile(profile)
    try:
        result = run_section(bytecode, section, energy, _efficiency(prof))
    except KeyError:
        _fail(f"unknown section {section!r}")
    if json_out:
        _echo_json(result.to_dict())
        return
    for inv in result.invocations:
        args = ", ".join(json.dumps(v) for v in inv.operands)
        typer.echo(f"{inv.operation}({args})")
    typer.echo(
        f"state={result.state.value} energy={result.energy:g} "
        f"spent={result.energy_spent:g}"
    )
    if result.error_message:
        typer.echo(f"error: {result.error_message}", err=True)


@app.command("estimate")
def cmd_estimate(
    program: Path = typer.Argument(..., help="Bytecode (raw or hex) or source."),
    profile: Optional[Path] = typer.Option(None, "--profile", "-p", help="Actor profile for efficiency levels."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """
    Static upper bound of the energy each section can spend.
    """
    bytecode = _load_bytecode(program)
    prof = _load_profile(profile)
    try:
        est = estimate_energy(decode_program(bytecode), _efficiency(prof))
    except SpellError as e:
        _fail(str(e), code=1)
    if json_out:
        _echo_json(est.to_dict())
    else:
        typer.echo(format_estimate(est))


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
    show_version: bool = typer.Option(False, "--version", help="Print version and exit."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if show_version:
        typer.echo(__version__)
        raise typer.Exit(0)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


if __name__ == "__main__":
    app()
