"""
主机 / 登录用户选择

编号菜单，输入序号选择
"""

from typing import List

import click

from tpot.exceptions import SelectionError


def _choose(title: str, items: List[str]) -> str:
    click.echo(f"{title}:")
    for i, item in enumerate(items, start=1):
        click.echo(f"  {i:>3}) {item}")
    index = click.prompt("Select", type=click.IntRange(1, len(items)), default=1)
    return items[index - 1]


def select_host(hosts: List[str]) -> str:
    if not hosts:
        raise SelectionError(
            "no hosts configured, add nodes to the proxy configuration, pass --host or refresh with -r"
        )
    return _choose("Hosts", hosts)


def select_user(logins: List[str]) -> str:
    if not logins:
        raise SelectionError(
            "no user logins configured, add user_logins to the proxy configuration, pass --user or refresh with -r"
        )
    if len(logins) == 1:
        return logins[0]
    return _choose("User logins", logins)
