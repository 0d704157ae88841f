"""
Codex CLI integration for the PRD wizard.

Codex is the oracle: it reads a prompt on stdin and leaves its final answer
in the file named by --output-last-message.
"""

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from prdwizard.lib.config import OracleProfile, PRDPaths
from prdwizard.lib.text import compact_single_line, decode_utf8, sanitize_utf8
from prdwizard.pm.errors import ExternalServiceError, classify_failure

logger = logging.getLogger(__name__)

OUTPUT_FILE_NAME = "assistant-last-message.txt"


@dataclass
class CodexRunner:
    paths: PRDPaths
    profile: OracleProfile

    def build_command(self, output_path: Path) -> list[str]:
        """codex argv for one non-interactive call."""
        cmd = [
            self.profile.command or "codex",
            "--ask-for-approval", self.profile.approval,
            "exec",
            "--sandbox", self.profile.sandbox,
        ]
        model = (self.profile.model or "").strip()
        if model:
            cmd += ["--model", model]
        cmd += [
            "--cd", str(self.paths.project_dir),
            "--skip-git-repo-check",
            "--output-last-message", str(output_path),
            "-",
        ]
        return cmd

    def run(self, prompt: str, label: str = "prd") -> str:
        """
        Run codex with the prompt on stdin and return its last message.

        Raises:
            ExternalServiceError: On any failure, already classified
        """
        if not self.profile.enabled:
            raise ExternalServiceError("exec_failure", "codex disabled in profile.yaml (codex.enabled=false)")

        command = self.profile.command or "codex"
        if shutil.which(command) is None:
            raise ExternalServiceError("not_installed", f"{command} command not found")

        timeout = self.profile.resolved_timeout()
        self.paths.tmp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=str(self.paths.tmp_dir), prefix=f"prd-{label}-") as tmp:
            output_path = Path(tmp) / OUTPUT_FILE_NAME
            cmd = self.build_command(output_path)
            logger.debug(f"[CODEX] {label}: running {' '.join(cmd)} (timeout {timeout}s)")

            try:
                result = subprocess.run(
                    cmd,
                    input=sanitize_utf8(prompt),
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                )
            except subprocess.TimeoutExpired:
                raise ExternalServiceError("timeout", f"codex exec timeout after {timeout}s") from None
            except FileNotFoundError:
                raise ExternalServiceError("not_installed", f"{command} command not found") from None
            except PermissionError as e:
                raise ExternalServiceError("permission", f"codex exec permission denied: {e}") from None

            if result.returncode != 0:
                err_text = compact_single_line((result.stderr or "").strip(), 220)
                message = f"codex exec failed (exit {result.returncode})"
                if err_text:
                    message += f": {err_text}"
                category, detail = classify_failure(RuntimeError(message))
                raise ExternalServiceError(category, detail)

            try:
                raw = decode_utf8(output_path.read_bytes())
            except OSError as e:
                raise ExternalServiceError("file_not_found", f"read codex output: {e}") from None

        logger.debug(f"[CODEX] {label}: {len(raw)} chars returned")
        return raw
