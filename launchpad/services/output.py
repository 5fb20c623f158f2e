import json
import re
from typing import Any, Optional

from launchpad.schemas.output import HostRecap, Play, StructuredOutput, TaskResult
from launchpad.utils.text import strip_ansi

STATUS_PREFIXES = {
    "ok:": "ok",
    "changed:": "changed",
    "failed:": "failed",
    "fatal:": "failed",
    "skipping:": "skipped",
}

PLAY_RE = re.compile(r"PLAY \[(.*?)\]")
TASK_RE = re.compile(r"TASK \[(.*?)\]")
HOST_RE = re.compile(r"^\w+: \[(.*?)\]")
RECAP_RE = re.compile(
    r"^(\S+)\s*:\s+ok=(\d+)\s+changed=(\d+)\s+unreachable=(\d+)\s+failed=(\d+)"
    r"\s+skipped=(\d+)\s+rescued=(\d+)\s+ignored=(\d+)"
)
MARKER_RES = {
    "stdout": re.compile(r'^"?stdout"?\s*:'),
    "stderr": re.compile(r'^"?stderr"?\s*:'),
    "msg": re.compile(r'^"?msg"?\s*:'),
}
MARKER_VALUE_RES = {
    name: re.compile(rf'^"?{name}"?\s*:\s*"?(.*)$') for name in MARKER_RES
}
TRAILING_QUOTE_RE = re.compile(r'",?\s*$')


def _json_end(text: str, depth: int = 0) -> tuple[int, int]:
    """Counts braces through ``text`` starting from ``depth``.

    Returns:
        A tuple of (index_of_closing_brace or -1, depth after scanning).
    """
    for idx, char in enumerate(text):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx, depth
    return -1, depth


class _LineScanner:
    """Stateful single pass over line-oriented ansible-playbook output."""

    def __init__(self, lines: list[str]):
        self.lines = lines
        self.plays: list[Play] = []
        self.recap: dict[str, HostRecap] = {}
        self.current_play: Optional[Play] = None
        self.current_task: Optional[TaskResult] = None
        # Records of the current task, by host
        self.task_hosts: dict[str, TaskResult] = {}
        self.in_recap = False
        self.collecting = False
        self.buffer: list[str] = []
        self.output_type: Optional[str] = None

    def finish_collection(self) -> None:
        if self.collecting and self.current_task and self.output_type and self.buffer:
            content = "\n".join(self.buffer).strip()
            if content:
                setattr(self.current_task, self.output_type, content)
        self.collecting = False
        self.buffer = []
        self.output_type = None

    def apply_result(self, content: Any) -> None:
        if not self.current_task:
            return
        self.current_task.result = content
        if not isinstance(content, dict):
            return
        for key in ("stdout", "stderr", "msg", "results"):
            if content.get(key):
                setattr(self.current_task, key, content[key])

    def open_play(self, line: str) -> None:
        match = PLAY_RE.search(line)
        self.current_play = Play(name=match.group(1) if match else "Unknown Play")
        self.plays.append(self.current_play)
        self.current_task = None

    def open_task(self, line: str) -> None:
        match = TASK_RE.search(line)
        self.current_task = TaskResult(name=match.group(1) if match else "Unknown Task", status="running")
        self.task_hosts = {}
        if self.current_play:
            self.current_play.tasks.append(self.current_task)

    def close_task(self, line: str, status: str) -> None:
        match = HOST_RE.match(line)
        host = match.group(1) if match else None
        task = self.current_task
        if not task:
            return
        if task.host and host and task.host != host:
            # One record per host per task, reused across loop items
            task = self.task_hosts.get(host)
            if task is None:
                task = TaskResult(name=self.current_task.name, status=status)
                if self.current_play:
                    self.current_play.tasks.append(task)
            self.current_task = task
        task.status = status
        task.host = host
        if host:
            self.task_hosts.setdefault(host, task)

    def embedded_json(self, index: int, line: str) -> int:
        """Parses JSON on a status line, possibly continued on later lines.

        Returns:
            The index of the last line consumed.
        """
        start = line.find("{")
        if start == -1:
            return index
        fragment = line[start:]
        end, depth = _json_end(fragment)
        if end != -1:
            try:
                self.apply_result(json.loads(fragment[: end + 1]))
            except ValueError:
                pass
            return index

        collected = [fragment]
        for j in range(index + 1, len(self.lines)):
            next_line = self.lines[j]
            collected.append(next_line)
            # depth carries across lines; the newline join adds no braces
            end, depth = _json_end(next_line, depth)
            if end != -1:
                try:
                    self.apply_result(json.loads("\n".join(collected)))
                except ValueError:
                    pass
                return j
        return index

    def start_marker(self, name: str, line: str) -> None:
        self.finish_collection()
        self.collecting = True
        self.output_type = name
        match = MARKER_VALUE_RES[name].match(line)
        value = match.group(1) if match else ""
        if name == "msg":
            content = TRAILING_QUOTE_RE.sub("", value.removeprefix('"'))
            if content and self.current_task:
                self.current_task.msg = content
            self.collecting = False
        elif value and not value.startswith('"'):
            self.buffer.append(TRAILING_QUOTE_RE.sub("", value))

    def scan(self) -> None:
        i = 0
        while i < len(self.lines):
            trimmed = self.lines[i].strip()
            status = next((s for p, s in STATUS_PREFIXES.items() if trimmed.startswith(p)), None)
            marker = next((m for m, regex in MARKER_RES.items() if regex.match(trimmed)), None)

            if trimmed.startswith("PLAY ["):
                self.finish_collection()
                self.open_play(trimmed)
            elif trimmed.startswith("TASK ["):
                self.finish_collection()
                self.open_task(trimmed)
            elif status:
                self.finish_collection()
                self.close_task(trimmed, status)
                i = self.embedded_json(i, trimmed)
            elif "PLAY RECAP" in trimmed:
                self.finish_collection()
                self.in_recap = True
                self.current_task = None
            elif marker:
                self.start_marker(marker, trimmed)
            elif self.collecting and not trimmed.startswith("}") and not trimmed.startswith('"'):
                cleaned = TRAILING_QUOTE_RE.sub("", trimmed.removeprefix('"')).replace("\\n", "\n")
                if cleaned and cleaned != ",":
                    self.buffer.append(cleaned)
            elif trimmed in ("}", "},"):
                self.finish_collection()
            elif self.in_recap and ":" in trimmed:
                match = RECAP_RE.match(trimmed)
                if match:
                    host, *counts = match.groups()
                    self.recap[host] = HostRecap(**dict(zip(HostRecap.model_fields, map(int, counts))))
            i += 1
        self.finish_collection()


class OutputParser:
    """Rebuilds the play/task/recap view of a run from its raw output.

    The parser is pure: it never touches storage and gives the same result
    for the same text, so views can be rebuilt from the event log at any
    time, including while a job is still running. Two strategies are tried
    in order:

    1. JSON: the text holds a document with a ``plays`` array, as produced
       by the ``json`` stdout callback.
    2. Lines: the human readable default callback, scanned line by line.

    Malformed fragments are skipped; ``parse`` does not raise on any input.
    """

    @staticmethod
    def parse(output: str) -> StructuredOutput:
        text = strip_ansi(output or "")
        document = OutputParser._find_json_document(text)
        if document is not None:
            try:
                return OutputParser.parse_json(document)
            except (TypeError, AttributeError, ValueError):
                pass
        return OutputParser.parse_lines(text)

    @staticmethod
    def _find_json_document(text: str) -> Optional[dict[str, Any]]:
        if '"plays"' not in text:
            return None
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            document = json.loads(text[start : end + 1])
        except ValueError:
            return None
        if isinstance(document, dict) and isinstance(document.get("plays"), list):
            return document
        return None

    @staticmethod
    def task_status(host_result: dict[str, Any]) -> str:
        """Picks one status for a host result.

        Precedence is failed > changed > unreachable > skipped > ok, since a
        raw result can carry both ``changed`` and ``failed``.
        """
        for flag in ("failed", "changed", "unreachable", "skipped"):
            if host_result.get(flag):
                return flag
        return "ok"

    @staticmethod
    def parse_json(document: dict[str, Any]) -> StructuredOutput:
        plays = []
        for json_play in document.get("plays") or []:
            play = Play(name=(json_play.get("play") or {}).get("name") or "Unknown Play")
            for json_task in json_play.get("tasks") or []:
                task_name = (json_task.get("task") or {}).get("name")
                if not task_name:
                    continue
                for hostname, host_result in (json_task.get("hosts") or {}).items():
                    task = TaskResult(
                        name=task_name,
                        status=OutputParser.task_status(host_result),
                        host=hostname,
                    )
                    for key in ("stdout", "stderr", "msg", "results"):
                        if host_result.get(key):
                            setattr(task, key, host_result[key])
                    play.tasks.append(task)
            plays.append(play)

        recap = {}
        for hostname, stats in (document.get("stats") or {}).items():
            recap[hostname] = HostRecap(
                ok=stats.get("ok", 0),
                changed=stats.get("changed", 0),
                unreachable=stats.get("unreachable", 0),
                failed=stats.get("failures", 0),
                skipped=stats.get("skipped", 0),
                rescued=stats.get("rescued", 0),
                ignored=stats.get("ignored", 0),
            )
        return StructuredOutput(plays=plays, recap=recap or None)

    @staticmethod
    def parse_lines(text: str) -> StructuredOutput:
        scanner = _LineScanner(text.splitlines())
        scanner.scan()
        return StructuredOutput(plays=scanner.plays, recap=scanner.recap or None)

    @staticmethod
    def summarize(output: str) -> dict[str, int]:
        """Totals the recap counters across hosts, for the job summary."""
        recap = OutputParser.parse(output).recap or {}
        totals = {field: 0 for field in HostRecap.model_fields}
        for counters in recap.values():
            for field, value in counters.model_dump().items():
                totals[field] += value
        totals["hosts"] = len(recap)
        return totals
