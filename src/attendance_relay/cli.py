import json

import click

from . import __version__
from .config import AppConfig, ConfigError, ConfigManager, StoreBackend


def _load_config(config_manager: ConfigManager) -> AppConfig:
    """Load config or stop the command with a readable error"""
    try:
        cfg = config_manager.load()
    except ConfigError as e:
        raise click.ClickException(str(e))
    if cfg is None:
        raise click.ClickException(
            "Config not found. Run 'attendance-relay init' or set BOT_TOKEN"
        )
    return cfg


def _build_app(config_manager: ConfigManager, cfg: AppConfig):
    from .app import RelayApplication
    from .store import create_store

    store = create_store(cfg, config_manager.get_db_path())
    try:
        return RelayApplication(config=cfg, store=store)
    except ConfigError as e:
        raise click.ClickException(str(e))


config_dir_option = click.option(
    "--config-dir",
    type=click.Path(),
    default=None,
    help="Config directory"
)


@click.group(name="attendance-relay", help="Keyword-triggered Telegram notification relay")
def cli():
    pass


@cli.command(help="Show version")
def version():
    click.echo(f"attendance-relay {__version__}")


@cli.command(help="Interactive configuration")
@config_dir_option
def init(config_dir):
    config_manager = ConfigManager(config_dir)

    click.echo("🚀 Attendance relay - setup\n")

    if config_manager.exists():
        if not click.confirm("A config file already exists. Overwrite it?", default=False):
            click.echo("Cancelled")
            return

    click.echo("1. Telegram Bot Token")
    click.echo("   Get it from @BotFather (and disable privacy mode)")
    bot_token = click.prompt("   Bot Token", type=str)

    click.echo("\n2. Trigger word")
    keyword = click.prompt("   Keyword", type=str, default="Attendance")

    click.echo("\n3. Subscriber store")
    click.echo("   [1] SQLite (local file)")
    click.echo("   [2] Redis")
    store_choice = click.prompt("   Choose", type=int, default=1)
    store_backend = StoreBackend.REDIS if store_choice == 2 else StoreBackend.SQLITE
    redis_url = None
    if store_backend == StoreBackend.REDIS:
        redis_url = click.prompt("   Redis URL", type=str, default="redis://localhost:6379/0")

    click.echo("\n4. Reminder endpoint secret (optional)")
    cron_secret = click.prompt("   Secret (leave empty to skip)", type=str, default="")

    config = AppConfig(
        bot_token=bot_token,
        keyword=keyword,
        store_backend=store_backend,
        redis_url=redis_url,
        cron_secret=cron_secret or None,
    )
    config_manager.save(config)

    click.echo(f"\n✅ Config saved to: {config_manager.config_path}")
    click.echo("\nUse 'attendance-relay run' to start the bot")


@cli.command(help="Show current configuration")
@config_dir_option
def config(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)

    click.echo("📋 Current configuration:\n")
    click.echo(f"  Bot Token: {cfg.bot_token[:10]}...{cfg.bot_token[-5:]}")
    click.echo(f"  Keyword: {cfg.keyword}")
    if cfg.keyword_pattern:
        click.echo(f"  Pattern: {cfg.keyword_pattern}")
    click.echo(f"  Store: {cfg.store_backend.value}")
    click.echo(f"  Reminder secret: {'set' if cfg.cron_secret else 'not set'}")
    click.echo(f"  Send interval: {cfg.send_interval}s")

    reminders = cfg.reminders
    click.echo(
        f"\n  Class reminders: {'enabled' if reminders.enabled else 'disabled'}, "
        f"{reminders.hour:02d}:{reminders.minute:02d} UTC+{reminders.utc_offset_hours}"
    )
    for day, class_name in sorted(reminders.schedule.items()):
        click.echo(f"    day {day}: {class_name}")

    click.echo(f"\n  Config file: {config_manager.config_path}")
    click.echo(f"  Database: {config_manager.db_path}")


@cli.command(help="Start the bot with long polling and the reminder scheduler")
@config_dir_option
def run(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)

    from .app import setup_logging
    log_dir = config_manager.get_log_dir()
    setup_logging(log_dir)

    click.echo("🚀 Starting attendance relay (long polling)...")
    click.echo(f"   Keyword: {cfg.keyword}")
    click.echo(f"   Store: {cfg.store_backend.value}")
    click.echo(f"   Logs: {log_dir}\n")

    app = _build_app(config_manager, cfg)
    app.run()


@cli.command(help="Start the webhook server (Telegram webhook + reminder endpoint)")
@config_dir_option
@click.option("--host", type=str, default="0.0.0.0", help="Bind address")
@click.option("--port", type=int, default=8080, help="Port")
def serve(config_dir, host, port):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)

    from .app import setup_logging
    setup_logging(config_manager.get_log_dir())

    from .web import RelayWebServer

    app = _build_app(config_manager, cfg)
    app.start_background()
    server = RelayWebServer(app, cron_secret=cfg.cron_secret, host=host, port=port)
    try:
        server.run()
    finally:
        app.stop_background()


@cli.command(help="Send class reminders once")
@config_dir_option
@click.option("--force", is_flag=True, help="Send even outside the reminder window")
def remind(config_dir, force):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)

    from .app import setup_logging
    setup_logging()

    app = _build_app(config_manager, cfg)
    try:
        result = app.trigger_reminders(force=force)
    except Exception as e:
        raise click.ClickException(f"Bot startup failed: {e}")
    finally:
        app.stop_background()
    click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


@cli.command(help="Show subscriber counts per list")
@config_dir_option
def subscribers(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)

    from .store import create_store
    store = create_store(cfg, config_manager.get_db_path())

    click.echo("👥 Subscribers:")
    for list_name, count in store.get_stats().items():
        click.echo(f"   {list_name}: {count}")
