"""
tpot 命令行入口

使用方式:
    tpot -c               # 查看配置
    tpot staging          # 选择主机并登录 staging 环境
    tpot prod -u root     # 使用 root 登录 prod
    tpot prod -L          # 按配置维持 prod 的端口转发
    tpot prod -r          # 通过 tsh 重新获取 prod 的主机与登录用户
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from tpot import __version__
from tpot.config import DEFAULT_CONFIG_PATH, LoggingConfig, ProxyConfig, StatusAPIConfig, load_config
from tpot.dashboard import Dashboard
from tpot.exceptions import EnvNotFoundError, TpotError, TshError, UnsupportedVersionError
from tpot.forwarder import Defaults, ForwardSupervisor
from tpot.selector import select_host, select_user
from tpot.tsh import TSH

logger = logging.getLogger(__name__)


def setup_logging(config: LoggingConfig):
    """配置日志"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    level = getattr(logging, config.level.upper(), logging.INFO)

    # Live 面板会接管 stdout，日志统一输出到 stderr
    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    if config.file:
        log_path = Path(config.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def refresh_inventory(tsh: TSH, proxy: ProxyConfig, append: bool = False) -> ProxyConfig:
    """
    通过 tsh ls / tsh status 获取主机与登录用户

    Args:
        append: 与配置中的列表合并，否则替换

    Returns:
        本次运行使用的 ProxyConfig 副本，不写回配置文件
    """
    nodes = await tsh.list_nodes()
    if not nodes:
        raise TshError("there's no nodes found")

    try:
        logins = await tsh.status()
    except UnsupportedVersionError:
        version = await tsh.version()
        logger.warning(f"tsh {version} does not report user logins (v2.6.1+ required), using root")
        logins = ["root"]

    if append:
        nodes = _merge(proxy.nodes, nodes)
        logins = _merge(proxy.user_logins, logins)
    return proxy.model_copy(update={"nodes": nodes, "user_logins": logins})


def _merge(current, extra):
    return list(dict.fromkeys([*current, *extra]))


async def run_forwarding(proxy: ProxyConfig, defaults: Defaults, status_api: StatusAPIConfig):
    supervisor = ForwardSupervisor.from_config(proxy.forwarding, TSH(proxy), defaults, status_api=status_api)
    await supervisor.run(lambda states: Dashboard(states).run())


EXAMPLES = """
\b
Examples:
  tpot -c               Show the configuration
  tpot staging          Show the node list of staging and login
  tpot prod -u root     Login into production using root user
  tpot prod -L          Run the tsh forwarding based on the config list
  tpot prod -r          Refresh the node and login lists of prod using tsh
  tpot prod -a          Append the nodes and logins from tsh to the config lists
"""


@click.command(epilog=EXAMPLES, context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("env", required=False)
@click.option("-c", "--config", "show_config", is_flag=True, help="Show the configuration.")
@click.option("-L", "--forwarding", is_flag=True, help="Use tsh for port forwarding.")
@click.option("-r", "--refresh", is_flag=True, help="Refresh the nodes and user logins using tsh.")
@click.option("-a", "--append", is_flag=True, help="Append the nodes and user logins from tsh to the configured ones.")
@click.option("-u", "--user", default=None, help="User to login to the desired host.")
@click.option("--host", default=None, help="Host to login, skips the host menu.")
@click.option(
    "--config-file",
    envvar="TPOT_CONFIG",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path of the configuration file.",
)
@click.version_option(__version__, "-v", "--version", prog_name="tpot")
@click.pass_context
def cli(ctx, env, show_config, forwarding, refresh, append, user, host, config_file):
    """tpot is a tsh teleport wrapper."""
    try:
        config = load_config(config_file)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Please create config file at {DEFAULT_CONFIG_PATH}", err=True)
        sys.exit(1)
    except (TpotError, ValidationError) as e:
        click.echo(f"Error: invalid configuration {config_file}: {e}", err=True)
        sys.exit(1)

    setup_logging(config.logging)

    if show_config:
        click.echo(config.dump())
        return

    if not env:
        click.echo(ctx.get_help())
        return

    try:
        proxy = config.find_proxy(env)
        if refresh or append:
            proxy = asyncio.run(refresh_inventory(TSH(proxy), proxy, append=append))

        host = host or select_host(proxy.nodes)
        user = user or select_user(proxy.user_logins)

        if forwarding:
            asyncio.run(run_forwarding(proxy, Defaults(user=user, host=host), config.status_api))
            return

        click.echo(f"login using {user} {host}")
        rc = asyncio.run(TSH(proxy).ssh(user, host))
    except EnvNotFoundError as e:
        click.echo(f"Env {e.env} not found\n", err=True)
        click.echo(ctx.get_help(), err=True)
        sys.exit(1)
    except TpotError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nShutdown requested, exiting...")
        sys.exit(0)

    sys.exit(rc)


def main():
    cli()


if __name__ == "__main__":
    main()
