"""Shared test helpers: stream-json builders and fake Claude CLI scripts."""

import json
import sys
import textwrap
from pathlib import Path
from typing import Iterable, Optional


# ---------------------------------------------------------------------------
# stream-json lines
# ---------------------------------------------------------------------------

def delta_line(text: str) -> str:
    return json.dumps({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
    })


def assistant_line(model: str = "claude-opus-4-6") -> str:
    return json.dumps({
        "type": "assistant",
        "message": {"role": "assistant", "model": model, "content": []},
    })


def tool_start_line(name: str) -> str:
    return json.dumps({
        "type": "stream_event",
        "event": {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "name": name}},
    })


def result_line(text: str, input_tokens: int = 12, output_tokens: int = 7, model: str = "claude-opus-4-6") -> str:
    return json.dumps({
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": text,
        "session_id": "cli-session",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        "modelUsage": {model: {"inputTokens": input_tokens, "outputTokens": output_tokens}},
    })


# ---------------------------------------------------------------------------
# Fake CLI
# ---------------------------------------------------------------------------

FAKE_CLI_TEMPLATE = '''\
import json, os, sys, time

record = {RECORD!r}
if record:
    with open(record, "w") as f:
        json.dump({{"argv": sys.argv[1:], "cwd": os.getcwd(), "claudecode": os.environ.get("CLAUDECODE")}}, f)

for line in {STDERR!r}:
    sys.stderr.write(line + "\\n")
    sys.stderr.flush()

for line in {LINES!r}:
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()
    time.sleep({DELAY!r})

time.sleep({HANG!r})
sys.exit({EXIT!r})
'''


def write_fake_cli(
    directory: Path,
    lines: Iterable[str] = (),
    exit_code: int = 0,
    stderr: Iterable[str] = (),
    delay: float = 0.0,
    hang: float = 0.0,
    record: Optional[Path] = None,
    name: str = "fake-claude",
) -> str:
    """Write an executable script that behaves like `claude --print --output-format stream-json`."""
    body = FAKE_CLI_TEMPLATE.format(
        RECORD=str(record) if record else "",
        STDERR=list(stderr),
        LINES=list(lines),
        DELAY=delay,
        HANG=hang,
        EXIT=exit_code,
    )
    path = Path(directory) / name
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return str(path)


def read_record(record: Path) -> dict:
    return json.loads(Path(record).read_text())


class RecordingNotifier:
    """Notifier double that keeps every message."""

    def __init__(self):
        self.messages = []

    def notify(self, message: str) -> None:
        self.messages.append(message)

    def progress_reporter(self):
        return None

    async def aclose(self):
        pass


def sse_payloads(body: str) -> list:
    """Decoded `data:` payloads of an SSE body; [DONE] is kept as the string."""
    payloads = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads
