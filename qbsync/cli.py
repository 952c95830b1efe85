"""Click-based CLI for qbsync - Moodle question bank sync."""

from __future__ import annotations

import functools
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import click
import yaml
from pydantic import ValidationError
from rich.prompt import Confirm

from qbsync import __version__
from qbsync.config import QbsyncConfig, ensure_config_exists, get_config_path, load_config, validate_config_file
from qbsync.errors import ConfigError, QbsyncError, VersionConflictError
from qbsync.git import commit_all, commit_hash_of, ensure_gitignore, has_uncommitted_changes, init_repo, is_git_repo
from qbsync.output import Console, create_console
from qbsync.remote import ContextInfo, ContextLevel, MoodleClient, Scope
from qbsync.sync import (
    CourseResult,
    CourseSync,
    ManifestStore,
    OrphanCandidate,
    SyncEngine,
    load_manifest,
    manifest_path_for,
    recover,
)
from qbsync.sync.course import EngineFactory
from qbsync.utils import ensure_dir, expand_path

GITIGNORE_PATTERNS = ["**/*_question_manifest.json", "**/*_manifest_update.tmp", "**/manifest_backups/"]


def _load_config_or_exit(console: Console) -> QbsyncConfig:
    try:
        return load_config()
    except FileNotFoundError as e:
        console.print_error(str(e))
        sys.exit(1)
    except (ValidationError, yaml.YAMLError) as e:
        console.print_error(f"Invalid configuration: {e}")
        sys.exit(1)


def handle_errors(func: Callable) -> Callable:
    """Print qbsync errors and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except VersionConflictError as e:
            console = create_console()
            console.print_error(e.message)
            if e.entity_ids:
                console.print(f"  Questions: {', '.join(e.entity_ids)}")
            sys.exit(1)
        except QbsyncError as e:
            create_console().print_error(e.message)
            sys.exit(1)

    return wrapper


@dataclass
class RepoOptions:
    """Options shared by all repository commands."""

    instance: Optional[str]
    directory: Optional[str]
    manifest_path: Optional[str]
    context_level: Optional[str]
    course_name: Optional[str]
    module_name: Optional[str]
    course_category: Optional[str]
    instance_id: Optional[str]
    category: Optional[str]
    category_id: Optional[str]
    subdirectory: Optional[str]
    ignore_category: Optional[str]
    use_git: Optional[bool]
    verbose: bool
    yes: bool


def repo_options(func: Callable) -> Callable:
    """Attach the scope and repository options to a command."""
    options = [
        click.option("--instance", "-i", help="Moodle instance name from the configuration"),
        click.option(
            "--directory", "-d", help="Repository directory (relative to the configured root directory)"
        ),
        click.option("--manifest-path", "-f", help="Manifest file of an existing repository"),
        click.option(
            "--context-level",
            "-l",
            type=click.Choice([level.value for level in ContextLevel]),
            help="Moodle context the question bank lives in",
        ),
        click.option("--course-name", "-c", help="Full course name"),
        click.option("--module-name", "-m", help="Quiz (module) name"),
        click.option("--course-category", "-g", help="Course category name"),
        click.option("--instance-id", "-n", help="Moodle id of the course, module or course category"),
        click.option("--category", "-s", help="Question category path to limit the run to, e.g. 'top/Quiz 1'"),
        click.option("--category-id", "-q", help="Moodle id of the question category to limit the run to"),
        click.option("--subdirectory", help="Repository subdirectory to limit the run to"),
        click.option("--ignore-category", "-x", help="Regex; matching categories are not imported"),
        click.option("--use-git/--no-use-git", default=None, help="Track question files with git"),
        click.option("--verbose", "-v", is_flag=True, help="Show detailed output"),
        click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation"),
    ]

    @functools.wraps(func)
    def wrapper(**kwargs):
        opts = RepoOptions(**{name: kwargs.pop(name) for name in RepoOptions.__dataclass_fields__})
        return func(opts, **kwargs)

    for option in reversed(options):
        wrapper = option(wrapper)
    return wrapper


def _repository_root(config: QbsyncConfig, directory: Optional[str]) -> Path:
    root = Path(config.repository.root_directory)
    if directory is None:
        return expand_path(root)
    path = Path(directory).expanduser()
    return expand_path(path if path.is_absolute() else root / path)


def _scope_from_options(opts: RepoOptions) -> Scope:
    if opts.context_level is None:
        raise ConfigError("Give --context-level (or --manifest-path for an existing repository).")
    return Scope(
        context_level=ContextLevel(opts.context_level),
        course_name=opts.course_name,
        module_name=opts.module_name,
        course_category=opts.course_category,
        instance_id=opts.instance_id,
        category_name=opts.category,
        category_id=opts.category_id,
    ).validate()


def _check_git(root: Path, console: Console, *, require_clean: bool = True) -> None:
    if not is_git_repo(root):
        raise ConfigError(f"{root} is not a git repository. Initialise it or run without --use-git.")
    if not require_clean:
        return
    if has_uncommitted_changes(root):
        raise ConfigError("There are changes to the repository. Either commit these or stash them before continuing.")
    console.print_debug(f"Git repository {root} is clean.")


def _build_engine(opts: RepoOptions, console: Console, *, create: bool = False) -> SyncEngine:
    """
    Assemble configuration, scope, client and store into an engine.

    For an existing repository the scope and defaults come from its manifest;
    command line options override them.
    """
    config = _load_config_or_exit(console)
    instance_name, instance = config.get_instance(opts.instance)

    if opts.manifest_path and not create:
        manifest_path = expand_path(opts.manifest_path)
        context = load_manifest(manifest_path).context
        scope = context.to_scope()
        subdirectory = opts.subdirectory if opts.subdirectory is not None else context.default_subdirectory
        if opts.category or opts.category_id:
            scope = scope.replace(category_name=opts.category, category_id=opts.category_id).validate()
            subdirectory = opts.subdirectory
        ignore_category = opts.ignore_category or context.default_ignore_category
    else:
        root = _repository_root(config, opts.directory)
        scope = _scope_from_options(opts)
        manifest_path = manifest_path_for(root, instance_name, scope)
        subdirectory = opts.subdirectory
        ignore_category = opts.ignore_category

    ignore_category = ignore_category or config.repository.ignore_category
    use_git = config.repository.use_git if opts.use_git is None else opts.use_git

    if create:
        ensure_dir(manifest_path.parent)
    if use_git:
        _check_git(manifest_path.parent, console, require_clean=not create)

    console.print_debug(f"Manifest: {manifest_path}")
    return SyncEngine(
        MoodleClient(instance.url, instance.token, timeout=instance.timeout),
        ManifestStore(manifest_path),
        scope,
        subdirectory=subdirectory,
        ignore_category=ignore_category,
        moodle_url=instance.url,
        commit_hash_of=commit_hash_of if use_git else None,
        console=console,
    )


def _console_for(opts: RepoOptions) -> Console:
    return create_console(verbose=opts.verbose)


def _confirm_context(engine: SyncEngine, opts: RepoOptions, console: Console) -> ContextInfo:
    """Show the Moodle context a run targets and ask to go on unless --yes."""
    info = engine.remote.context_info(engine.scope)
    console.print(f"[bold]Moodle URL:[/bold] {engine.moodle_url}", highlight=False)
    for line in info.describe():
        console.print(line, highlight=False)
    if not opts.yes and not Confirm.ask("Continue?", default=True):
        raise click.Abort()
    return info


def _backup_manifest(store: ManifestStore, console: Console) -> None:
    backup = store.backup()
    if backup is not None:
        console.print_debug(f"Manifest backed up to {backup}")


def _commit_created(engine: SyncEngine, console: Console) -> None:
    """Commit a freshly created repository and record its commits."""
    if not engine.use_git:
        return
    commit = commit_all("Initial Commit", engine.root)
    engine.record_commits()
    if commit:
        console.print_info(f"Committed {engine.root.name} as {commit[:12]}")


def _quiz_engine_factory(opts: RepoOptions, course_engine: SyncEngine, console: Console) -> EngineFactory:
    """Engines for the quiz repositories beside a course repository."""
    config = _load_config_or_exit(console)
    instance_name, _ = config.get_instance(opts.instance)

    def engine_for(directory: Path, scope: Scope) -> SyncEngine:
        store = ManifestStore(manifest_path_for(directory, instance_name, scope))
        if course_engine.use_git:
            if not store.exists():
                init_repo(directory)
                ensure_gitignore(directory, GITIGNORE_PATTERNS)
            _check_git(directory, console, require_clean=store.exists())
        _backup_manifest(store, console)
        return SyncEngine(
            course_engine.remote,
            store,
            scope,
            ignore_category=course_engine.ignore_category,
            moodle_url=course_engine.moodle_url,
            commit_hash_of=course_engine.commit_hash_of,
            console=console,
        )

    return engine_for


def _print_course_result(result: CourseResult, console: Console) -> None:
    for label, run in result.runs:
        console.print(f"[bold]{label}[/bold]", highlight=False)
        console.print_run_result(run)
    for path in result.structures:
        console.print_debug(f"Quiz structure: {path}")


@click.group()
@click.version_option(version=__version__, prog_name="qbsync")
def cli() -> None:
    """qbsync - Moodle question bank sync.

    Keeps a Moodle question bank and a local (optionally git tracked)
    question repository in step.

    \b
    Workflow:
      create   Export a question bank into a new repository
      export   Refresh the repository from Moodle
      import   Push the repository to Moodle
      tidy     Forget questions deleted in Moodle
      delete   Delete questions that exist on one side only
    """
    pass


WITH_QUIZZES = click.option(
    "--with-quizzes",
    is_flag=True,
    help="Course context only: also sync every quiz of the course in a repository of its own",
)


@cli.command()
@repo_options
@WITH_QUIZZES
@handle_errors
def create(opts: RepoOptions, with_quizzes: bool) -> None:
    """Create a repository from a Moodle question bank.

    Exports every question in the context (or below --category) into one
    directory per category and writes the manifest. With --with-quizzes
    each quiz of the course gets a sibling repository and a structure file.
    """
    console = _console_for(opts)
    engine = _build_engine(opts, console, create=True)
    _confirm_context(engine, opts, console)

    if engine.use_git:
        added = ensure_gitignore(engine.root, GITIGNORE_PATTERNS)
        if added:
            console.print_debug(f"Added {', '.join(added)} to .gitignore")

    if with_quizzes:
        course = CourseSync(
            engine,
            _quiz_engine_factory(opts, engine, console),
            on_created=lambda created: _commit_created(created, console),
            console=console,
        )
        course_result = course.create()
        _print_course_result(course_result, console)
        success = course_result.success
    else:
        result = engine.create_repo()
        _commit_created(engine, console)
        console.print_run_result(result)
        success = result.success

    console.print_success(f"Manifest written to {engine.store.path}")
    if not success:
        sys.exit(1)


@cli.command()
@repo_options
@WITH_QUIZZES
@handle_errors
def export(opts: RepoOptions, with_quizzes: bool) -> None:
    """Refresh the repository from Moodle.

    Overwrites tracked question files with their Moodle version, exports
    questions that are new in Moodle and drops questions deleted there.
    """
    console = _console_for(opts)
    engine = _build_engine(opts, console)
    _confirm_context(engine, opts, console)
    _backup_manifest(engine.store, console)

    if with_quizzes:
        course = CourseSync(
            engine,
            _quiz_engine_factory(opts, engine, console),
            on_created=lambda created: _commit_created(created, console),
            console=console,
        )
        course_result = course.export()
        _print_course_result(course_result, console)
        success = course_result.success
    else:
        result = engine.export_repo()
        console.print_run_result(result)
        success = result.success
    if not success:
        sys.exit(1)


@cli.command("import")
@repo_options
@click.option(
    "--check-versions/--no-check-versions",
    default=True,
    help="Refuse to import if questions changed in Moodle since the last export",
)
@WITH_QUIZZES
@handle_errors
def import_(opts: RepoOptions, check_versions: bool, with_quizzes: bool) -> None:
    """Push the repository to Moodle.

    Creates categories first, then imports every new or changed question
    file. Unchanged files (same commit as last sync) are skipped. With
    --with-quizzes the quiz repositories follow; quizzes missing in Moodle
    are created from their structure file, existing ones keep their structure.
    """
    console = _console_for(opts)
    engine = _build_engine(opts, console)
    _confirm_context(engine, opts, console)
    _backup_manifest(engine.store, console)

    if with_quizzes:
        course = CourseSync(engine, _quiz_engine_factory(opts, engine, console), console=console)
        course_result = course.import_(check_versions=check_versions)
        _print_course_result(course_result, console)
        success = course_result.success
    else:
        result = engine.import_repo(check_versions=check_versions)
        console.print_run_result(result)
        success = result.success
    if not success:
        sys.exit(1)


@cli.command()
@repo_options
@handle_errors
def tidy(opts: RepoOptions) -> None:
    """Remove manifest entries for questions deleted in Moodle."""
    console = _console_for(opts)
    engine = _build_engine(opts, console)
    engine.recover()
    removed = engine.tidy()
    if removed:
        console.print_success(f"Removed {len(removed)} question(s) from the manifest.")
    else:
        console.print_info("Manifest is tidy.")


@cli.command()
@repo_options
@handle_errors
def delete(opts: RepoOptions) -> None:
    """Delete questions that exist on only one side.

    Candidates are tracked questions whose file was deleted locally and
    Moodle questions that are not in the manifest. Each is confirmed
    before it is deleted in Moodle, unless --yes is given.
    """
    console = _console_for(opts)
    engine = _build_engine(opts, console)
    _confirm_context(engine, opts, console)
    engine.recover()
    _backup_manifest(engine.store, console)

    def confirm(candidate: OrphanCandidate) -> bool:
        if opts.yes:
            return True
        return Confirm.ask(f"Delete {candidate.describe()} from Moodle?", default=False)

    result = engine.delete_orphans(confirm)
    if not result.items:
        console.print_info("No orphaned questions found.")
        return
    console.print_success(f"Deleted {result.deleted} question(s).")
    if not result.success:
        sys.exit(1)


@cli.command("recover")
@click.argument("manifest_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@handle_errors
def recover_(manifest_path: Path) -> None:
    """Merge the staging log of an interrupted run into MANIFEST_PATH."""
    console = create_console()
    count = recover(ManifestStore(manifest_path), console)
    if count == 0:
        console.print_info("Nothing to recover.")


@cli.command()
@repo_options
@handle_errors
def status(opts: RepoOptions) -> None:
    """Compare the manifest with the files in the repository."""
    console = _console_for(opts)
    engine = _build_engine(opts, console)
    console.print_status(engine.status())


# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Configuration file commands.

    \b
    Location: ~/.config/qbsync/config.yaml
    Override with the QBSYNC_CONFIG environment variable.
    """
    pass


@config.command("init")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing configuration")
def config_init(force: bool) -> None:
    """Create a default configuration file."""
    console = create_console()
    config_path = get_config_path()

    if config_path.exists() and force:
        if not Confirm.ask(f"Overwrite {config_path}?", default=False):
            console.print_info("Aborted.")
            return
        config_path.unlink()

    path, created = ensure_config_exists(config_path)
    if created:
        console.print_success(f"Created configuration: {path}")
        console.print_info("Add your Moodle instances and webservice tokens before the first run.")
    else:
        console.print_info(f"Configuration already exists: {path}")


@config.command("show")
@click.option("--show-tokens", is_flag=True, help="Print webservice tokens in clear text")
def config_show(show_tokens: bool) -> None:
    """Show the effective configuration."""
    console = create_console()
    loaded = _load_config_or_exit(console)
    data = loaded.model_dump(mode="json")
    if not show_tokens:
        for instance in data["instances"].values():
            if instance.get("token"):
                instance["token"] = "********"
    console.print(f"[bold]{get_config_path()}[/bold]")
    console.print(yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True), highlight=False)


@config.command("validate")
def config_validate() -> None:
    """Validate the configuration file."""
    console = create_console()
    valid, errors = validate_config_file()
    if valid:
        console.print_success("Configuration is valid.")
        return
    for error in errors:
        console.print_error(error)
    sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
