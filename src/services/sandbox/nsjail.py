"""nsjail command builder for sandboxed runs.

When sandboxing is enabled the executable is not started directly; nsjail
is started instead and execs it inside fresh PID/IPC/UTS/network
namespaces with dropped capabilities and per-process rlimits.
"""

from typing import List, Optional

import structlog

from ...config import settings
from ...config.sandbox import SandboxConfig

logger = structlog.get_logger(__name__)


class NsjailConfig:
    """Builds nsjail CLI arguments from the sandbox settings."""

    def __init__(self, config: Optional[SandboxConfig] = None):
        self._config = config or settings.sandbox

    @property
    def enabled(self) -> bool:
        return self._config.sandbox_enabled

    def build_args(self, work_dir: str, command: List[str]) -> List[str]:
        """Build nsjail CLI arguments.

        Args:
            work_dir: Host directory holding the executable; bind-mounted
                read-write at the same path and used as the cwd
            command: Executable and arguments to run inside the sandbox

        Returns:
            List of nsjail CLI arguments (not including the nsjail binary)
        """
        cfg = self._config
        args: List[str] = []

        # Execution mode: run once, stdio passed through
        args.extend(["--mode", "o"])
        args.append("--really_quiet")

        # Keep the child in our session so stdio pipes stay connected
        args.append("--skip_setsid")

        args.extend(["--time_limit", str(cfg.sandbox_time_limit)])

        args.extend(["--rlimit_as", "hard"])
        args.extend(["--rlimit_fsize", str(cfg.sandbox_rlimit_fsize_mb)])
        args.extend(["--rlimit_nofile", str(cfg.sandbox_rlimit_nofile)])
        args.extend(["--rlimit_nproc", str(cfg.sandbox_rlimit_nproc)])

        # Namespaces: new PID/IPC/UTS/mount by default. The user namespace
        # is skipped since uid maps cannot be written in nested containers.
        args.append("--disable_clone_newuser")
        if cfg.sandbox_network:
            args.append("--disable_clone_newnet")
        else:
            args.append("--iface_no_lo")

        args.extend(["--hostname", cfg.sandbox_hostname])
        args.append("--disable_proc")

        args.extend(
            [
                "--seccomp_string",
                "POLICY policy { ERRNO(1) { ptrace } } USE policy DEFAULT ALLOW",
            ]
        )

        # Root filesystem read-only, executable dir writable
        args.extend(["--chroot", "/"])
        args.extend(["--bindmount", f"{work_dir}:{work_dir}"])
        args.extend(["--cwd", work_dir])

        args.extend(["--user", str(cfg.sandbox_user_id)])
        args.extend(["--group", str(cfg.sandbox_group_id)])

        args.append("--")
        args.extend(command)

        return args

    def wrap(self, work_dir: str, command: List[str]) -> List[str]:
        """Full argv: nsjail binary followed by ``build_args``."""
        return [self._config.nsjail_binary] + self.build_args(work_dir, command)
