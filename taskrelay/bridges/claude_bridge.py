"""
Claude Code CLI bridge implementation
"""
import json
import asyncio
import inspect
import os
import subprocess
import time
from typing import List, Optional
from pathlib import Path
import logging

from taskrelay.core import IClaudeBridge, RunContext, RunResult, ChunkCallback
from taskrelay.core.retry import classify_error
from taskrelay.core.task_kinds import template_for_kind, turns_for_kind
from taskrelay.config import config

logger = logging.getLogger(__name__)

# stream-json lines carry whole tool results; the asyncio default of 64 KiB is too small
_STREAM_LINE_LIMIT = 16 * 1024 * 1024


class PromptTemplateError(Exception):
    """Raised when an instruction template cannot be located or read."""


class ClaudeBridge(IClaudeBridge):
    """Bridge that spawns the Claude Code CLI once per run.

    The template for the task kind is prepended to the instruction and passed
    inline with `-p`. Output is read as stream-json; assistant text blocks are
    forwarded to the caller as they arrive.
    """

    def __init__(self, executable: Optional[str] = None, workdir: Optional[str] = None,
                 prompts_dir: Optional[str] = None):
        self.claude_executable = executable or config.claude.executable
        self.workdir = workdir or config.claude.workdir
        self.prompts_dir = Path(prompts_dir or config.claude.prompts_dir)

    def _load_template(self, name: str) -> str:
        """Read prompts/<name>.txt."""
        path = self.prompts_dir / f"{name}.txt"
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PromptTemplateError(f"prompt file '{name}.txt' not found in {self.prompts_dir}: {e}") from e

    def _build_prompt(self, template_text: str, instruction: str) -> str:
        """Prepend the system-level template to the task instruction."""
        return f"{template_text.strip()}\n\n---\n\nCurrent task:\n{instruction}"

    def _build_command(self, prompt: str, max_turns: int) -> List[str]:
        """Build the CLI command line for one run."""
        command = [
            self.claude_executable,
            "-p", prompt,
            "--output-format", config.claude.output_format,
            "--verbose",
            "--max-turns", str(max_turns),
        ]
        if config.claude.skip_permissions:
            # Run fully autonomously - no permission prompts mid-task
            command.append("--dangerously-skip-permissions")
        return command

    def _build_env(self) -> dict:
        env = dict(os.environ)
        # A nested CLI refuses to start when it believes it runs inside another session
        env.pop("CLAUDECODE", None)
        return env

    async def run(self, task_kind: str, instruction: str, max_turns: Optional[int] = None,
                  on_chunk: Optional[ChunkCallback] = None, template: Optional[str] = None) -> RunResult:
        """Run one task and return its result. Never raises for executor failures."""
        start_time = time.time()
        template_name = template or template_for_kind(task_kind)
        budget = max_turns if max_turns is not None else turns_for_kind(task_kind)

        try:
            template_text = self._load_template(template_name)
        except PromptTemplateError as e:
            logger.error(f"Prompt file not found: prompts/{template_name}.txt")
            return RunResult(
                text=f"Error: prompt file '{template_name}.txt' not found.",
                success=False,
                error=str(e),
                error_class="config",
                hint=f"Create prompts/{template_name}.txt or point PROMPTS_DIR at the prompts directory.",
            )

        ctx = RunContext(task_kind=task_kind, instruction=instruction, max_turns=budget, on_chunk=on_chunk)
        command = self._build_command(self._build_prompt(template_text, instruction), budget)

        logger.info(
            f"event=claude_spawn kind={task_kind} template={template_name} "
            f"max_turns={budget} instruction={instruction[:80]!r}"
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workdir,
                env=self._build_env(),
                limit=_STREAM_LINE_LIMIT,
            )
        except OSError as e:
            logger.error(f"Failed to spawn claude ({self.claude_executable}): {e}")
            classification = classify_error(e)
            return RunResult(
                text=f"Failed to start claude: {e}",
                success=False,
                error=str(e),
                execution_time=time.time() - start_time,
                error_class="spawn",
                hint=classification.hint,
            )

        stderr_task = asyncio.create_task(self._drain(process.stderr))
        try:
            await self._stream_stdout(process.stdout, ctx)
        except BaseException:
            # Reader failed or we were cancelled: don't leave the CLI running detached
            if process.returncode is None:
                process.kill()
            stderr_task.cancel()
            await process.wait()
            raise
        stderr_text = await stderr_task
        return_code = await process.wait()

        return self._finish(ctx, return_code, stderr_text, time.time() - start_time)

    async def _drain(self, stream: asyncio.StreamReader) -> str:
        data = await stream.read()
        return data.decode("utf-8", errors="replace")

    async def _stream_stdout(self, stream: asyncio.StreamReader, ctx: RunContext) -> None:
        """Read stdout line by line and forward text increments."""
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace")
            for chunk in self._parse_line(line, ctx):
                ctx.buffer.append(chunk)
                await self._emit_chunk(ctx, chunk)

    def _parse_line(self, line: str, ctx: RunContext) -> List[str]:
        """Extract streamable text from one stdout line.

        assistant events yield their text blocks; the final result event is
        kept as a fallback; non-JSON lines are passed through as plain text.
        """
        stripped = line.strip()
        if not stripped:
            return []
        try:
            event = json.loads(stripped)
        except json.JSONDecodeError:
            return [line if line.endswith("\n") else line + "\n"]
        if not isinstance(event, dict):
            return [line if line.endswith("\n") else line + "\n"]

        event_type = event.get("type")
        if event_type == "assistant":
            message = event.get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            chunks = []
            if isinstance(content, list):
                for block in content:
                    if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                        if block["text"]:
                            chunks.append(block["text"])
            return chunks
        if event_type == "result":
            result = event.get("result")
            if isinstance(result, str) and result:
                ctx.fallback_result = result
        return []

    async def _emit_chunk(self, ctx: RunContext, chunk: str) -> None:
        if ctx.on_chunk is None:
            return
        try:
            outcome = ctx.on_chunk(chunk)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # Observers must not abort the run
            logger.warning(f"on_chunk callback failed: {e}")

    def _finish(self, ctx: RunContext, return_code: int, stderr_text: str, execution_time: float) -> RunResult:
        """Map the exit code and collected output to a RunResult."""
        accumulated = ctx.text.strip()
        preview_len = config.claude.stderr_preview_chars
        stderr_preview = stderr_text.strip()[:preview_len]

        if return_code == 0:
            text = accumulated or ctx.fallback_result.strip() or "Done."
            logger.info(f"event=claude_done kind={ctx.task_kind} chars={len(text)} duration_s={execution_time:.2f}")
            return RunResult(
                text=text,
                success=True,
                return_code=return_code,
                execution_time=execution_time,
            )

        logger.error(f"claude exited {return_code}: {stderr_preview}")
        error = stderr_preview or f"Exit code {return_code}"
        classification = classify_error(error)
        return RunResult(
            text=accumulated or ctx.fallback_result.strip() or stderr_preview or f"Exit code {return_code}",
            success=False,
            error=error,
            return_code=return_code,
            execution_time=execution_time,
            error_class=classification.category.value,
            hint=classification.hint,
        )

    def test_connection(self) -> bool:
        """Test if the Claude Code CLI is available."""
        try:
            result = subprocess.run(
                [self.claude_executable, "--version"],
                capture_output=True,
                text=True,
                timeout=10
            )
            return result.returncode == 0
        except (OSError, subprocess.SubprocessError):
            return False
