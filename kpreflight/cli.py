"""
Command-line interface for the kernel preflight pipeline.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kpreflight import __version__
from kpreflight.config import (
    KABI_ORACLES,
    PATCH_CATEGORIES,
    SUPPORTED_DISTROS,
    PreflightConfig,
    write_config_file,
)
from kpreflight.errors import AnnotationIOError, ConfigError, PreflightError

console = Console()


def print_banner():
    """Print application banner."""
    console.print(Panel.fit(
        f"[bold blue]Kernel Preflight[/bold blue] v{__version__}\n"
        "[dim]Patch annotation and incremental KABI checking[/dim]",
        border_style="blue",
    ))


def load_config(config_file: Optional[str], **overrides) -> PreflightConfig:
    """Config from file (or environment), with CLI overrides applied."""
    if config_file:
        config = PreflightConfig.from_file(Path(config_file))
    else:
        config = PreflightConfig.from_env()
    return config.update(**overrides)


config_option = click.option(
    "--config", "-c", "config_file", type=click.Path(exists=True, dir_okay=False),
    help="Configuration file (KEY=\"value\" format)",
)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.pass_context
def main(ctx, verbose: bool, quiet: bool):
    """
    Kernel patch series preflight tool.

    Annotates patches with upstream provenance metadata, applies them one by
    one and checks the kernel module interface after each patch.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if not quiet:
        print_banner()


@main.command()
@config_option
@click.option("--linux-src", type=click.Path(file_okay=False), help="Kernel source tree")
@click.option("--upstream-repo", type=click.Path(file_okay=False),
              help="Bare clone of the canonical upstream repository")
@click.option("--num-patches", "-n", type=int, help="Number of commits to process")
@click.option("--jobs", "-j", type=int, help="Build threads")
@click.option("--distro", type=click.Choice(SUPPORTED_DISTROS), help="Distribution profile")
@click.option("--oracle", type=click.Choice(KABI_ORACLES), help="KABI comparison tool")
@click.option("--work-dir", type=click.Path(file_okay=False),
              help="Directory for patches, backups and logs")
@click.option("--no-baseline-build", is_flag=True,
              help="Reuse an existing baseline manifest instead of building one")
@click.pass_context
def run(
    ctx,
    config_file: Optional[str],
    linux_src: Optional[str],
    upstream_repo: Optional[str],
    num_patches: Optional[int],
    jobs: Optional[int],
    distro: Optional[str],
    oracle: Optional[str],
    work_dir: Optional[str],
    no_baseline_build: bool,
):
    """
    Run the full preflight pipeline.

    Generates the last N commits as patches, rewrites their headers, resets
    the tree, re-applies the patches with a KABI check after each one and
    finishes with a full kernel build.

    Examples:

        # Use a configuration file
        kernel-preflight run --config euler/.configure

        # Override the number of patches and build threads
        kernel-preflight run -c .configure -n 5 -j 32
    """
    from kpreflight.build import KernelBuilder
    from kpreflight.common import setup_logging, timestamp
    from kpreflight.sequencer import create_sequencer

    try:
        config = load_config(
            config_file,
            linux_src_path=linux_src,
            upstream_repo=upstream_repo,
            num_patches=num_patches,
            build_threads=jobs,
            distro=distro,
            kabi_oracle=oracle,
            work_dir=work_dir,
            baseline_build=False if no_baseline_build else None,
        )
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)

    config.ensure_dirs()
    level = logging.DEBUG if ctx.obj.get("verbose") else logging.INFO
    setup_logging("kpreflight", level=level,
                  log_file=config.logs_dir / f"preflight_{timestamp()}.log")

    builder = KernelBuilder(config.linux_src_path, config.profile.defconfig,
                            config.build_threads, config.logs_dir)
    deps_ok, missing = builder.verify_build_deps()
    if not deps_ok:
        console.print(f"[red]Missing dependencies: {', '.join(missing)}[/red]")
        sys.exit(ConfigError.exit_code)

    try:
        sequencer = create_sequencer(config)
        report = sequencer.run()
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if ctx.obj.get("verbose"):
            console.print_exception()
        sys.exit(1)

    sequencer.reporter.print_report(report)
    sys.exit(report.exit_code)


def _annotation_config(config_file, upstream_repo, signer_name, signer_email,
                       bugzilla_id, category, distro) -> PreflightConfig:
    config = load_config(
        config_file,
        upstream_repo=upstream_repo,
        signer_name=signer_name,
        signer_email=signer_email,
        bugzilla_id=bugzilla_id,
        patch_category=category,
        distro=distro,
    )
    missing = [
        key for key, value in [
            ("SIGNER_NAME", config.signer_name),
            ("SIGNER_EMAIL", config.signer_email),
            ("BUGZILLA_ID", config.bugzilla_id),
            ("TORVALDS_REPO", config.upstream_repo),
        ] if not value
    ]
    if missing:
        raise ConfigError(f"{', '.join(missing)} missing in config")
    return config


annotation_options = [
    click.option("--upstream-repo", type=click.Path(file_okay=False),
                 help="Bare clone of the canonical upstream repository"),
    click.option("--signer-name", help="Name for the Signed-off-by line"),
    click.option("--signer-email", help="Email for the Signed-off-by line"),
    click.option("--bugzilla-id", help="Tracking issue id"),
    click.option("--category", type=click.Choice(PATCH_CATEGORIES), help="Patch category"),
    click.option("--distro", type=click.Choice(SUPPORTED_DISTROS), help="Distribution profile"),
]


def with_annotation_options(func):
    for option in reversed(annotation_options):
        func = option(func)
    return func


@main.command()
@config_option
@with_annotation_options
@click.argument("patches", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def annotate(
    ctx,
    config_file: Optional[str],
    upstream_repo: Optional[str],
    signer_name: Optional[str],
    signer_email: Optional[str],
    bugzilla_id: Optional[str],
    category: Optional[str],
    distro: Optional[str],
    patches: Tuple[str, ...],
):
    """
    Rewrite patch files in place with metadata headers and sign-off.

    Running it again on the same files changes nothing.
    """
    from kpreflight.classifier import PatchClassifier
    from kpreflight.git_backend import UpstreamMirror
    from kpreflight.models import Classification, PatchFile
    from kpreflight.provenance import ProvenanceResolver
    from kpreflight.rewriter import HeaderMetadata, HeaderRewriter

    try:
        config = _annotation_config(config_file, upstream_repo, signer_name, signer_email,
                                    bugzilla_id, category, distro)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)

    resolver = ProvenanceResolver(UpstreamMirror(config.upstream_repo))
    classifier = PatchClassifier(resolver)
    rewriter = HeaderRewriter(HeaderMetadata.from_config(config))

    try:
        for path in sorted(Path(p) for p in patches):
            try:
                patch = PatchFile.load(path)
                original = patch.text
                classification = classifier.classify(patch)
                provenance = None
                if classification == Classification.MAINLINE_DERIVED:
                    provenance = resolver.provenance_for(patch, mutate=True)
                patch.text = rewriter.annotate(patch.text, classification, provenance)
                if patch.text != original:
                    patch.save()
            except OSError as e:
                raise AnnotationIOError(f"Failed to rewrite {path.name}: {e}")
            changed = "updated" if patch.text != original else "unchanged"
            console.print(f"  {path.name}: {classification.value} ({changed})")
    except PreflightError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)


@main.command()
@config_option
@click.option("--upstream-repo", type=click.Path(file_okay=False),
              help="Bare clone of the canonical upstream repository")
@click.argument("patches", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def classify(config_file: Optional[str], upstream_repo: Optional[str], patches: Tuple[str, ...]):
    """
    Show classification and upstream provenance of patch files.

    Patch files are not modified.
    """
    from kpreflight.classifier import PatchClassifier
    from kpreflight.git_backend import UpstreamMirror
    from kpreflight.models import PatchFile
    from kpreflight.provenance import ProvenanceResolver

    try:
        config = load_config(config_file, upstream_repo=upstream_repo)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)
    if not config.upstream_repo:
        console.print("[red]Error: TORVALDS_REPO missing in config[/red]")
        sys.exit(ConfigError.exit_code)

    resolver = ProvenanceResolver(UpstreamMirror(config.upstream_repo))
    classifier = PatchClassifier(resolver)

    table = Table(title="\nPatch Classification", show_header=True, header_style="bold")
    table.add_column("Patch", style="cyan")
    table.add_column("Type")
    table.add_column("Upstream commit")
    table.add_column("Tag")

    for path in sorted(Path(p) for p in patches):
        patch = PatchFile.load(path)
        classification = classifier.classify(patch)
        provenance = resolver.provenance_for(patch, mutate=False)
        table.add_row(
            path.name,
            classification.value,
            provenance.commit if provenance else "-",
            provenance.tag if provenance else "-",
        )
    console.print(table)


@main.command(name="check-format")
@config_option
@click.option("--linux-src", type=click.Path(file_okay=False), help="Kernel source tree")
@click.option("--num-patches", "-n", type=int, help="Number of commits to check")
@click.option("--upstream-repo", type=click.Path(file_okay=False),
              help="Bare clone of the canonical upstream repository")
def check_format(
    config_file: Optional[str],
    linux_src: Optional[str],
    num_patches: Optional[int],
    upstream_repo: Optional[str],
):
    """
    Verify metadata headers and sign-offs of the applied commits.
    """
    from kpreflight.format_check import FormatChecker
    from kpreflight.git_backend import KernelTree, UpstreamMirror

    try:
        config = load_config(config_file, linux_src_path=linux_src,
                             num_patches=num_patches, upstream_repo=upstream_repo)
        if not config.linux_src_path or not config.signer_name or not config.signer_email:
            raise ConfigError("LINUX_SRC_PATH, SIGNER_NAME and SIGNER_EMAIL are required")
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)

    tree = KernelTree(config.linux_src_path)
    mirror = UpstreamMirror(config.upstream_repo) if config.upstream_repo else None
    checker = FormatChecker(tree, mirror, config.profile, config.signoff_line)
    log_file = config.logs_dir / "check_format.log"
    results = checker.check(config.num_patches or 10, log_file=log_file)

    for result in results:
        status = "[green]✓[/green]" if result.passed else "[red]✗[/red]"
        console.print(f"  {status} {result.commit[:12]} {result.subject}")
        for error in result.errors:
            console.print(f"      {error}")

    failed = sum(1 for r in results if not r.passed)
    console.print(f"\n[bold]Format check:[/bold] {len(results) - failed} passed, {failed} failed")
    console.print(f"[blue]Full log: {log_file}[/blue]")
    if failed:
        sys.exit(1)


@main.command()
@config_option
@click.option("--path", "mirror_path", type=click.Path(file_okay=False),
              help="Mirror location (default: TORVALDS_REPO)")
@click.option("--url", default="https://github.com/torvalds/linux.git",
              help="Upstream repository URL")
@click.pass_context
def mirror(ctx, config_file: Optional[str], mirror_path: Optional[str], url: str):
    """
    Clone or update the canonical upstream mirror.
    """
    from kpreflight.common import check_network
    from kpreflight.git_backend import UpstreamMirror

    config = load_config(config_file)
    path = Path(mirror_path) if mirror_path else config.upstream_repo
    if path is None:
        path = config.work_dir / ".torvalds-linux"

    if not check_network(retries=1):
        console.print("[red]Network is not available. Aborting.[/red]")
        sys.exit(1)

    try:
        UpstreamMirror.clone_or_update(path, url)
        console.print(f"[green]Upstream mirror ready: {path}[/green]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if ctx.obj.get("verbose"):
            console.print_exception()
        sys.exit(1)


@main.command(name="init-config")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=".configure",
              help="Configuration file to write")
@click.option("--linux-src", required=True, type=click.Path(file_okay=False),
              help="Kernel source tree")
@click.option("--signer-name", required=True, help="Name for the Signed-off-by line")
@click.option("--signer-email", required=True, help="Email for the Signed-off-by line")
@click.option("--bugzilla-id", required=True, help="Tracking issue id")
@click.option("--category", type=click.Choice(PATCH_CATEGORIES), default="feature",
              help="Patch category")
@click.option("--num-patches", "-n", type=int, required=True, help="Number of patches to apply")
@click.option("--jobs", "-j", type=int, help="Build threads (default: CPU count)")
@click.option("--distro", type=click.Choice(SUPPORTED_DISTROS), default="openeuler",
              help="Distribution profile")
@click.option("--upstream-repo", type=click.Path(file_okay=False),
              help="Upstream mirror (default: <work dir>/.torvalds-linux)")
def init_config(
    output: str,
    linux_src: str,
    signer_name: str,
    signer_email: str,
    bugzilla_id: str,
    category: str,
    num_patches: int,
    jobs: Optional[int],
    distro: str,
    upstream_repo: Optional[str],
):
    """
    Write a configuration file for later runs.
    """
    output_path = Path(output).resolve()
    config = PreflightConfig(work_dir=output_path.parent).update(
        linux_src_path=linux_src,
        signer_name=signer_name,
        signer_email=signer_email,
        bugzilla_id=bugzilla_id,
        patch_category=category,
        num_patches=num_patches,
        build_threads=jobs,
        distro=distro,
        upstream_repo=upstream_repo or output_path.parent / ".torvalds-linux",
    )
    try:
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(e.exit_code)

    write_config_file(config, output_path)
    console.print(f"  Created: {output_path}")
    console.print(f"  Linux source: {config.linux_src_path}")
    console.print(f"  Patches to process: {config.num_patches}")
    console.print(f"  Patch category: {config.patch_category}")
    console.print(f"  Build threads: {config.build_threads}")


if __name__ == "__main__":
    main()
