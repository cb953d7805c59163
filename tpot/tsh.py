"""
tsh 客户端封装

通过 Teleport 代理登录主机，以及维护本地端口转发：
    tsh ssh --proxy=<proxy> -N -L <listen>:localhost:<remote> user@host
"""

import asyncio
import json
import logging
import re
import shutil
from typing import List, Optional

from tpot.config import ProxyConfig
from tpot.exceptions import ForwardError, IdleTimeout, TshError, UnsupportedVersionError
from tpot.forwarder.idle import IdleWindow

logger = logging.getLogger(__name__)


async def _terminate(proc: asyncio.subprocess.Process):
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
        await asyncio.wait_for(proc.wait(), timeout=5)
    except asyncio.TimeoutError:
        try:
            proc.kill()
            await asyncio.wait_for(proc.wait(), timeout=5)
        except (ProcessLookupError, asyncio.TimeoutError):
            pass
    except ProcessLookupError:
        pass


class TSH:
    def __init__(self, proxy: ProxyConfig, binary: str = "tsh"):
        self.proxy = proxy
        self.binary = binary

    def _resolve_binary(self) -> str:
        path = shutil.which(self.binary)
        if not path:
            raise TshError("tsh binary not found (teleport client required)")
        return path

    def _base_command(self, subcommand: str) -> List[str]:
        cmd = [self._resolve_binary(), subcommand, f"--proxy={self.proxy.address}"]
        if self.proxy.user_name:
            cmd.append(f"--user={self.proxy.user_name}")
        if self.proxy.auth_connector:
            cmd.append(f"--auth={self.proxy.auth_connector}")
        return cmd

    def build_ssh_command(self, user: str, host: str, forward: Optional[str] = None) -> List[str]:
        cmd = self._base_command("ssh")
        if forward:
            cmd += ["-N", "-L", forward]
        cmd.append(f"{user}@{host}")
        return cmd

    async def ssh(self, user: str, host: str) -> int:
        """前台交互式登录，返回 tsh 退出码"""
        cmd = self.build_ssh_command(user, host)
        logger.debug(f"exec: {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(*cmd)
        try:
            return await proc.wait()
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

    async def _run(self, cmd: List[str]) -> str:
        """执行 tsh 子命令并返回 stdout；stdin 继承终端，以便 tsh 提示登录"""
        logger.debug(f"exec: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TshError(f"failed to start tsh: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            lines = [line.strip() for line in stderr.decode(errors="replace").splitlines() if line.strip()]
            raise TshError(lines[-1] if lines else f"tsh exited with code {proc.returncode}")
        return stdout.decode(errors="replace")

    async def list_nodes(self) -> List[str]:
        """
        通过 tsh ls 获取代理下的主机列表

        Returns:
            去重并排序后的主机名
        """
        out = await self._run(self._base_command("ls") + ["--format=json"])
        try:
            items = json.loads(out or "[]")
        except json.JSONDecodeError as e:
            raise TshError(f"unexpected tsh ls output: {e}") from e

        hosts = set()
        for item in items:
            spec = item.get("spec") or {}
            hostname = spec.get("hostname") or item.get("hostname")
            if hostname:
                hosts.add(hostname)
        return sorted(hosts)

    async def status(self) -> List[str]:
        """
        通过 tsh status 获取当前用户可用的登录用户

        Raises:
            UnsupportedVersionError: 输出中没有 Logins 字段（tsh 低于 v2.6.1）
        """
        out = await self._run(self._base_command("status"))
        for line in out.splitlines():
            key, sep, value = line.strip().lstrip(">").partition(":")
            if sep and key.strip() == "Logins":
                return [login.strip() for login in value.split(",") if login.strip()]
        raise UnsupportedVersionError("tsh status does not report user logins")

    async def version(self) -> str:
        out = await self._run([self._resolve_binary(), "version"])
        match = re.search(r"v?(\d+\.\d+\.\d+\S*)", out)
        if not match:
            raise TshError(f"unexpected tsh version output: {out.strip()}")
        return match.group(1)

    async def forward(self, user: str, host: str, address: str, idle: IdleWindow) -> None:
        """
        执行一次端口转发，阻塞直到 tsh 退出或空闲窗口到期

        Raises:
            IdleTimeout: 空闲窗口到期，tsh 已被结束
            ForwardError: tsh 启动失败或以非零退出码退出
        """
        try:
            cmd = self.build_ssh_command(user, host, forward=address)
        except TshError as e:
            raise ForwardError(str(e)) from e
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ForwardError(f"failed to start tsh: {e}") from e

        logger.debug(f"forward {address} via {user}@{host} started (pid={proc.pid})")
        last_line: List[str] = []
        stderr_task = asyncio.create_task(self._read_stderr(proc, last_line))
        wait_task = asyncio.create_task(proc.wait())
        idle_task = asyncio.create_task(idle.expired())

        try:
            done, _ = await asyncio.wait({wait_task, idle_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            stderr_task.cancel()
            raise
        finally:
            idle_task.cancel()
            if not wait_task.done():
                await _terminate(proc)
                wait_task.cancel()

        try:
            await asyncio.wait_for(stderr_task, timeout=1)
        except asyncio.TimeoutError:
            stderr_task.cancel()

        if wait_task not in done:
            logger.debug(f"forward {address}: idle window expired, tsh stopped")
            raise IdleTimeout(idle.duration)

        rc = wait_task.result()
        if rc != 0:
            raise ForwardError(last_line[0] if last_line else f"tsh exited with code {rc}")

    async def _read_stderr(self, proc: asyncio.subprocess.Process, last_line: List[str]):
        if not proc.stderr:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            text = line.decode(errors="replace").strip()
            if not text:
                continue
            last_line[:] = [text]
            logger.info(f"tsh: {text}")
