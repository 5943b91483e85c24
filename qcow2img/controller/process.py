# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/controller/process.py
"""
qemu-img subprocess plumbing for the controller:
  - spawn in its own process group (so cancel can take the whole tree down)
  - one pump task per output stream feeding a shared queue
  - process-tree termination (killpg on POSIX, taskkill /T on Windows)
"""
from __future__ import annotations

import asyncio
import codecs
import os
import signal
import subprocess
from typing import List, Optional, Tuple

from ..converters.qemu.converter import Convert
from .events import LogSource

# (source, line); line None marks end of that stream
QueueItem = Tuple[LogSource, Optional[str]]

READ_CHUNK = 4096


async def spawn(cmd: List[str]) -> asyncio.subprocess.Process:
    kwargs = {}
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
    else:
        kwargs["start_new_session"] = True
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **kwargs,
    )


async def pump_lines(
    stream: Optional[asyncio.StreamReader],
    source: LogSource,
    queue: "asyncio.Queue[QueueItem]",
) -> None:
    """
    Read `stream` until EOF and put each line on `queue` in order.

    Lines are split on \\n, \\r\\n and bare \\r. The end-of-stream sentinel
    is always queued, even when reading fails.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buf = ""
    try:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            buf += decoder.decode(chunk)
            parts = Convert.split_lines(buf)
            buf = parts.pop()
            for line in parts:
                await queue.put((source, line))
        buf += decoder.decode(b"", final=True)
        if buf:
            await queue.put((source, buf))
    finally:
        queue.put_nowait((source, None))


def kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """
    Forcefully terminate `proc` and everything it spawned.

    Raises ProcessLookupError when the process is already gone and OSError
    (or PermissionError) when the OS refuses.
    """
    if proc.returncode is not None:
        raise ProcessLookupError(f"process {proc.pid} has already exited (rc={proc.returncode})")

    if os.name == "nt":
        cp = subprocess.run(
            ["taskkill", "/PID", str(proc.pid), "/T", "/F"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        if cp.returncode != 0:
            raise OSError(f"taskkill failed (rc={cp.returncode}): {(cp.stdout or '').strip()}")
        return

    os.killpg(proc.pid, signal.SIGKILL)
