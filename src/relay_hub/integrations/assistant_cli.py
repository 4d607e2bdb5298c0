from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Any, Protocol

from relay_core.config import (
    DEFAULT_ASSISTANT_EXECUTABLE,
    DEFAULT_MAX_MESSAGE_LENGTH,
    DEFAULT_SESSION_CACHE_MAX_ENTRIES,
    DEFAULT_SESSION_CACHE_TTL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    AssistantConfig,
)
from relay_core.errors import InvalidInputError, ProcessFailureError, TurnTimeoutError
from relay_core.logging import log_fields
from relay_hub.integrations.session_cache import SessionCache


LOGGER = logging.getLogger("relay_hub.bridge")

SESSION_NEW = "new"
SESSION_CONTINUING = "continuing"
# Set by the assistant CLI in its own children; a relay launched from inside a
# session must not make the child believe it is nested.
NESTED_SESSION_ENV_VAR = "CLAUDECODE"
OUTPUT_TAIL_MAX_CHARS = 2000
KILL_REAP_TIMEOUT_SECONDS = 2.0

_SANITIZE_TABLE = str.maketrans(
    {
        "$": "\\$",
        ";": None,
        "|": None,
        "&": None,
        "`": None,
        "\n": " ",
        "\r": None,
    }
)


class TurnExecutor(Protocol):
    def converse(self, conversation_id: str, text: str) -> str: ...


def sanitize_prompt(text: str, *, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    if len(text) > max_length:
        raise InvalidInputError(f"Message exceeds maximum length of {max_length} characters.")
    return text.translate(_SANITIZE_TABLE)


def _output_tail(output: str, max_chars: int = OUTPUT_TAIL_MAX_CHARS) -> str:
    stripped = str(output or "").strip()
    if len(stripped) <= max_chars:
        return stripped
    return "..." + stripped[-max_chars:]


def parse_assistant_result(output: str) -> str:
    try:
        payload = json.loads(output)
    except json.JSONDecodeError as exc:
        raise ProcessFailureError(f"Assistant returned unparseable output: {_output_tail(output)}") from exc
    if not isinstance(payload, dict):
        raise ProcessFailureError("Assistant output must be a JSON object.")
    result = payload.get("result")
    if not isinstance(result, str):
        raise ProcessFailureError("Assistant output is missing a text 'result' field.")
    return result


class SessionBridge:
    """Runs one assistant CLI process per turn and keeps sessions continuous.

    The first turn of a conversation starts a remote session keyed by the
    conversation id; later turns resume it for as long as the session cache
    remembers that the start succeeded.
    """

    def __init__(
        self,
        *,
        executable: str = DEFAULT_ASSISTANT_EXECUTABLE,
        model: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        session_cache: SessionCache | None = None,
        working_dir: Path | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self.executable = str(executable)
        self.model = model
        self.timeout_seconds = float(timeout_seconds)
        self.max_message_length = int(max_message_length)
        self.sessions = session_cache if session_cache is not None else SessionCache(
            max_entries=DEFAULT_SESSION_CACHE_MAX_ENTRIES,
            ttl_seconds=DEFAULT_SESSION_CACHE_TTL_SECONDS,
        )
        self.working_dir = Path(working_dir) if working_dir else Path.home()
        self._extra_env = dict(extra_env or {})

    @classmethod
    def from_config(cls, config: AssistantConfig) -> "SessionBridge":
        return cls(
            executable=config.executable,
            model=config.model,
            timeout_seconds=config.timeout_seconds,
            max_message_length=config.max_message_length,
            session_cache=SessionCache(
                max_entries=config.session_cache_max_entries,
                ttl_seconds=config.session_cache_ttl_seconds,
            ),
            working_dir=Path(config.working_dir).expanduser() if config.working_dir else None,
        )

    def classify(self, conversation_id: str) -> str:
        if self.sessions.contains(str(conversation_id)):
            return SESSION_CONTINUING
        return SESSION_NEW

    def forget_session(self, conversation_id: str) -> None:
        if self.sessions.forget(str(conversation_id)):
            LOGGER.debug(
                "Forgot assistant session",
                extra=log_fields(conversation_id=str(conversation_id), component="bridge", operation="forget"),
            )

    def build_command(self, conversation_id: str, prompt: str, *, session_state: str) -> list[str]:
        session_flag = "--session-id" if session_state == SESSION_NEW else "--resume"
        cmd = [self.executable, "-p", "--output-format", "json", session_flag, str(conversation_id)]
        if self.model:
            cmd.extend(["--model", self.model])
        cmd.append(prompt)
        return cmd

    def converse(self, conversation_id: str, text: str) -> str:
        prompt = sanitize_prompt(str(text), max_length=self.max_message_length)
        key = str(conversation_id)
        session_state = self.classify(key)
        cmd = self.build_command(key, prompt, session_state=session_state)
        LOGGER.debug(
            "Launching assistant session=%s",
            session_state,
            extra=log_fields(conversation_id=key, component="bridge", operation="launch", result="started"),
        )
        started = time.monotonic()
        return_code, output = self._run(cmd, conversation_id=key, started=started)
        duration_ms = int((time.monotonic() - started) * 1000)

        if return_code != 0:
            LOGGER.error(
                "Assistant exited with code %s",
                return_code,
                extra=log_fields(
                    conversation_id=key,
                    component="bridge",
                    operation="converse",
                    result="failed",
                    duration_ms=duration_ms,
                    error_class="ProcessFailureError",
                ),
            )
            raise ProcessFailureError(f"Assistant exited with code {return_code}: {_output_tail(output)}")

        # A clean exit means the remote session now exists, even if the
        # output below turns out to be unusable.
        self.sessions.mark(key)
        reply = parse_assistant_result(output)
        LOGGER.info(
            "Assistant replied chars=%d",
            len(reply),
            extra=log_fields(
                conversation_id=key,
                component="bridge",
                operation="converse",
                result="ok",
                duration_ms=duration_ms,
            ),
        )
        return reply

    def _assistant_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.pop(NESTED_SESSION_ENV_VAR, None)
        for key, value in self._extra_env.items():
            env[str(key)] = str(value)
        return env

    def _run(self, cmd: list[str], *, conversation_id: str, started: float) -> tuple[int, str]:
        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(self.working_dir),
                env=self._assistant_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessFailureError(f"Assistant failed to start ({cmd[0]}): {exc}") from exc

        try:
            # communicate() drains the merged output while waiting, so a chatty
            # child can never block on a full pipe.
            output, _ = process.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            self._kill(process)
            LOGGER.warning(
                "Assistant timed out after %ss",
                self.timeout_seconds,
                extra=log_fields(
                    conversation_id=conversation_id,
                    component="bridge",
                    operation="converse",
                    result="timeout",
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error_class="TurnTimeoutError",
                ),
            )
            raise TurnTimeoutError(f"Assistant timed out after {self.timeout_seconds:g}s.") from exc
        return process.returncode, output or ""

    @staticmethod
    def _kill(process: subprocess.Popen[Any]) -> None:
        # The child leads its own session, so the group also holds anything it
        # spawned that could keep the output pipe open.
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError, OSError):
            try:
                process.kill()
            except (ProcessLookupError, OSError):
                pass
        try:
            process.communicate(timeout=KILL_REAP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            LOGGER.warning(
                "Assistant output pipe still open after kill pid=%s",
                process.pid,
                extra=log_fields(component="bridge", operation="kill", result="pipe_open"),
            )
        finally:
            if process.stdout is not None:
                process.stdout.close()
        try:
            process.wait(timeout=KILL_REAP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            LOGGER.warning(
                "Assistant process was not reaped after kill pid=%s",
                process.pid,
                extra=log_fields(component="bridge", operation="kill", result="not_reaped"),
            )
