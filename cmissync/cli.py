"""CLI interface for cmissync."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import click

from .api import CmisClient
from .config import config
from .exceptions import CmisAPIError
from .output import OutputFormatter
from .sync import (
    RuleFilter,
    RulesType,
    SyncConfigError,
    SyncEngine,
    SyncFolder,
    load_sync_folders_from_json,
)

logger = logging.getLogger(__name__)


def connection_settings(ctx: Any) -> dict[str, str]:
    """Get the connection settings, command line first, then config.

    Args:
        ctx: Click context

    Returns:
        Dictionary with url, user, password and repositoryId keys
    """
    obj = ctx.obj or {}
    return {
        "url": obj.get("url") or config.url or "",
        "user": obj.get("user") or config.user or "",
        "password": obj.get("password") or config.password or "",
        "repositoryId": obj.get("repository") or config.repository_id or "",
    }


def require_url(ctx: Any, out: OutputFormatter) -> dict[str, str]:
    """Get the connection settings, exiting if no service URL is known."""
    settings = connection_settings(ctx)
    if not settings["url"]:
        out.error("No repository URL configured.")
        out.info("Run 'cmissync init' or pass --url (or set CMISSYNC_URL).")
        ctx.exit(1)
    return settings


def _make_listener(out: OutputFormatter, no_progress: bool):
    from .cli_progress import RichActivityListener

    if no_progress or not out.interactive:
        return None
    return RichActivityListener(console=out.console)


@click.group()
@click.option("--url", envvar="CMISSYNC_URL", help="CMIS browser binding URL")
@click.option("--user", "-u", envvar="CMISSYNC_USER", help="User name")
@click.option(
    "--password", envvar="CMISSYNC_PASSWORD", help="Password (prefer the env variable)"
)
@click.option(
    "--repository", "-R", envvar="CMISSYNC_REPOSITORY", help="Repository id"
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pycmissync")
@click.pass_context
def main(
    ctx: Any,
    url: Optional[str],
    user: Optional[str],
    password: Optional[str],
    repository: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """cmissync - Keep a local folder in sync with a CMIS repository folder."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url
    ctx.obj["user"] = user
    ctx.obj["password"] = password
    ctx.obj["repository"] = repository
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("cmissync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option("--url", prompt="CMIS browser binding URL", help="Service URL")
@click.option("--user", "-u", prompt="User name", help="User name")
@click.option(
    "--password",
    prompt="Password",
    hide_input=True,
    help="Password",
)
@click.option(
    "--repository",
    "-R",
    default="",
    help="Repository id (default: first repository of the service)",
)
@click.pass_context
def init(ctx: Any, url: str, user: str, password: str, repository: str) -> None:
    """Initialize cmissync configuration.

    Stores the connection settings in ~/.config/cmissync/config.json.
    """
    out: OutputFormatter = ctx.obj["out"]

    repository_id = repository
    out.info("Validating connection...")
    try:
        with CmisClient(
            url=url, user=user, password=password, repository_id=repository or None
        ) as client:
            info = client.get_repository_info()
        repository_id = repository or info.id
        out.success(f"✓ Connected to repository {info.name} ({info.id})")
    except CmisAPIError as e:
        out.error(f"Connection failed: {e}")
        if not click.confirm("Save settings anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    try:
        config.save_connection(url, user, password, repository_id)
    except CmisAPIError as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)

    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
            ("Repository", repository_id or "(first available)"),
        ],
    )


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show repository information and change log support."""
    out: OutputFormatter = ctx.obj["out"]
    settings = require_url(ctx, out)

    try:
        with CmisClient(
            url=settings["url"],
            user=settings["user"],
            password=settings["password"],
            repository_id=settings["repositoryId"] or None,
        ) as client:
            info = client.get_repository_info()
    except CmisAPIError as e:
        out.error(f"Cannot reach repository: {e}")
        ctx.exit(1)
        return

    product = f"{info.product_name or ''} {info.product_version or ''}".strip()
    out.print_summary(
        "Repository",
        [
            ("Name", info.name),
            ("Id", info.id),
            ("Product", product),
            ("Root folder", info.root_folder_id),
            ("Change log", info.changes_capability or "none"),
            ("Incremental sync", "yes" if info.supports_change_log else "no"),
            ("Latest change token", info.latest_change_log_token),
        ],
    )


@main.command()
@click.argument("path")
@click.option("--folder", "-f", is_flag=True, help="Check the path as a folder")
@click.pass_context
def check(ctx: Any, path: str, folder: bool) -> None:
    """Check whether PATH would be synchronized or excluded."""
    out: OutputFormatter = ctx.obj["out"]

    ruletype = RulesType.FOLDER if folder else RulesType.FILE
    allowed = RuleFilter().is_allowed(path, ruletype)

    if out.json_output:
        out.output_json({"path": path, "type": ruletype.value, "allowed": allowed})
        return

    if allowed:
        out.success(f"✓ {path} is synchronized")
    else:
        out.warning(f"{path} is excluded from sync")


def _run_daemon(
    engines: list[SyncEngine], interval: Optional[float], out: OutputFormatter
) -> None:
    """Run every engine in its own thread until interrupted."""
    threads = [
        threading.Thread(
            target=engine.run,
            kwargs={"interval": interval},
            name=engine.folder.name,
            daemon=True,
        )
        for engine in engines
    ]
    for thread in threads:
        thread.start()
    out.info("Watching for changes (Ctrl-C to stop)...")
    try:
        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(timeout=0.5)
    except KeyboardInterrupt:
        out.info("Stopping...")
    finally:
        for engine in engines:
            engine.stop()
        for thread in threads:
            thread.join()


@main.command()
@click.argument("local", required=False, type=click.Path(file_okay=False))
@click.option("--remote", "-r", help="Remote folder path, e.g. /Sites/demo")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file listing sync folders",
)
@click.option("--daemon", "-d", is_flag=True, help="Keep syncing until interrupted")
@click.option(
    "--interval",
    "-i",
    type=float,
    default=None,
    help="Seconds between sync cycles in daemon mode (default: 60)",
)
@click.option("--no-progress", is_flag=True, help="Disable the activity spinner")
@click.pass_context
def sync(
    ctx: Any,
    local: Optional[str],
    remote: Optional[str],
    config_file: Optional[str],
    daemon: bool,
    interval: Optional[float],
    no_progress: bool,
) -> None:
    """Sync a CMIS folder into a LOCAL directory.

    The first sync copies the whole remote folder, later syncs replay the
    repository change log (or copy again if the repository has none).

    Examples:
        cmissync sync ~/CmisSync/demo -r /Sites/demo
        cmissync sync ~/CmisSync/demo -r /Sites/demo --daemon -i 30
        cmissync sync --config folders.json --daemon
    """
    out: OutputFormatter = ctx.obj["out"]
    settings = connection_settings(ctx)

    if config_file:
        if local or remote:
            out.error("Cannot combine --config with LOCAL/--remote.")
            ctx.exit(1)
        try:
            folders = load_sync_folders_from_json(Path(config_file), defaults=settings)
        except SyncConfigError as e:
            out.error(str(e))
            ctx.exit(1)
            return
    else:
        if not local or not remote:
            out.error("LOCAL and --remote are required (or use --config).")
            ctx.exit(1)
            return
        folders = [
            SyncFolder(
                local=Path(local),
                remote=remote,
                url=settings["url"],
                user=settings["user"],
                password=settings["password"],
                repository_id=settings["repositoryId"],
            )
        ]

    missing_url = [f for f in folders if not f.url]
    if missing_url:
        out.error("No repository URL configured.")
        out.info("Run 'cmissync init' or pass --url (or set CMISSYNC_URL).")
        ctx.exit(1)

    listener = _make_listener(out, no_progress)
    engines = [SyncEngine(folder, activity_listener=listener) for folder in folders]

    try:
        if daemon:
            if listener is not None:
                with listener:
                    _run_daemon(engines, interval, out)
            else:
                _run_daemon(engines, interval, out)
            return

        results = []
        for engine in engines:
            out.info(f"Syncing: {engine.folder.local} <- {engine.folder.remote}")
            try:
                if listener is not None:
                    with listener:
                        success = engine.sync()
                else:
                    success = engine.sync()
            except CmisAPIError as e:
                out.error(f"Sync of {engine.folder.local} failed: {e}")
                success = False
            results.append(
                {
                    "local": str(engine.folder.local),
                    "remote": engine.folder.remote,
                    "success": success,
                }
            )
    finally:
        for engine in engines:
            engine.close()

    all_ok = all(r["success"] for r in results)
    if out.json_output:
        out.output_json(results)
    else:
        if len(results) > 1:
            out.output_table(
                results,
                ["local", "remote", "success"],
                headers={"local": "Local", "remote": "Remote", "success": "OK"},
                title="Sync Folders",
            )
        if all_ok:
            out.success("✓ Sync complete")
        else:
            out.warning(
                "Sync finished with failures, they are retried on the next run."
            )

    if not all_ok:
        ctx.exit(1)


@main.command()
@click.argument("local_folder", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--remote", "-r", required=True, help="Remote folder receiving LOCAL_FOLDER"
)
@click.option("--no-progress", is_flag=True, help="Disable the activity spinner")
@click.pass_context
def push(ctx: Any, local_folder: str, remote: str, no_progress: bool) -> None:
    """Upload LOCAL_FOLDER and everything below it into a remote folder.

    Examples:
        cmissync push ./reports -r /Sites/demo
    """
    out: OutputFormatter = ctx.obj["out"]
    settings = require_url(ctx, out)

    local_path = Path(local_folder).resolve()
    folder = SyncFolder(
        local=local_path.parent,
        remote=remote,
        url=settings["url"],
        user=settings["user"],
        password=settings["password"],
        repository_id=settings["repositoryId"],
    )
    listener = _make_listener(out, no_progress)

    with SyncEngine(folder, activity_listener=listener) as engine:
        try:
            if listener is not None:
                with listener:
                    remote_folder = engine.upload_folder(local_path)
            else:
                remote_folder = engine.upload_folder(local_path)
        except (CmisAPIError, OSError) as e:
            out.error(f"Upload failed: {e}")
            ctx.exit(1)
            return

    if remote_folder is None:
        out.warning(f"{local_path} is excluded from sync, nothing uploaded")
        return

    if out.json_output:
        out.output_json(
            {
                "local": str(local_path),
                "remote": remote_folder.path,
                "id": remote_folder.id,
            }
        )
    else:
        out.success(f"✓ Uploaded {local_path} to {remote_folder.path}")


if __name__ == "__main__":
    main()
