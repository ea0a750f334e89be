"""Markdown rendering of run results."""

from typing import Optional

from sockbox.models import RunResult

# Maximum output size per stream (100KB)
DEFAULT_MAX_OUTPUT_BYTES = 100 * 1024


def truncate_output(output: str, name: str, max_bytes: int = DEFAULT_MAX_OUTPUT_BYTES) -> str:
    """Cut ``output`` to ``max_bytes`` of UTF-8 and note the full size."""
    encoded = output.encode("utf-8")
    if len(encoded) <= max_bytes:
        return output

    head = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return f"{head}\n...[{name} truncated, {len(encoded)} bytes total]"


def format_execution_result(
    result: RunResult,
    runtime: Optional[str] = None,
    stdout_cap: int = DEFAULT_MAX_OUTPUT_BYTES,
    stderr_cap: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> str:
    """Render a result as Markdown:

        ## Execution Result

        **Exit Code:** 0
        **Duration:** 123ms

        ### stdout
        ```
        ...
        ```

        ### stderr
        ```
        (empty)
        ```
    """
    stdout = truncate_output(result.stdout, "stdout", stdout_cap)
    stderr = truncate_output(result.stderr, "stderr", stderr_cap)

    lines = [
        "## Execution Result",
        "",
        f"**Exit Code:** {result.exit_code}",
        f"**Duration:** {result.duration_ms}ms",
    ]
    if runtime:
        lines.append(f"**Runtime:** {runtime}")
    if result.timed_out:
        lines.append("**TIMED OUT**")

    lines += [
        "",
        "### stdout",
        "```",
        stdout.strip() or "(empty)",
        "```",
        "",
        "### stderr",
        "```",
        stderr.strip() or "(empty)",
        "```",
    ]
    return "\n".join(lines)


def format_error_result(error: str, duration_ms: int, runtime: Optional[str] = None) -> str:
    return format_execution_result(
        RunResult(exit_code=-1, stdout="", stderr=error, duration_ms=duration_ms),
        runtime=runtime,
    )


def format_no_code_error() -> str:
    return format_execution_result(
        RunResult(exit_code=1, stdout="", stderr="Error: No code provided", duration_ms=0)
    )
