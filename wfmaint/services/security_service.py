"""Hardcoded-secret scan and workflow secret hygiene checks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from ..executor import ItemResult

CACHE_CONTEXT = "security:v1"
LABEL = "security"

SECRET_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("password assignment", re.compile(r"password\s*[:=]\s*['\"][^'\"]{8,}['\"]", re.IGNORECASE)),
    ("api key assignment", re.compile(r"api_key\s*[:=]\s*['\"][^'\"]{20,}['\"]", re.IGNORECASE)),
    ("secret assignment", re.compile(r"secret\s*[:=]\s*['\"][^'\"]{16,}['\"]", re.IGNORECASE)),
    ("token assignment", re.compile(r"token\s*[:=]\s*['\"][^'\"]{20,}['\"]", re.IGNORECASE)),
    ("GitHub personal access token", re.compile(r"ghp_[a-zA-Z0-9]{36}")),
    ("GitHub fine-grained token", re.compile(r"github_pat_[a-zA-Z0-9_]{82}")),
    ("OpenAI-style secret key", re.compile(r"sk-[a-zA-Z0-9]{48}")),
)
_SECRET_REFERENCE = re.compile(r"\$\{\{[^}]*secrets\.([A-Za-z0-9_]+)[^}]*\}\}")
_WRITE_ALL = re.compile(r"permissions:\s*write-all")
_BINARY_SNIFF = 8192


@dataclass(slots=True)
class SecretScanner:
    """Per-file policy; ``workflow_dir`` marks files that get workflow checks."""

    workflow_dir: str = ".github/workflows"

    def is_workflow(self, path: Path) -> bool:
        if path.suffix.lower() not in {".yml", ".yaml"}:
            return False
        return path.parent.as_posix().endswith(self.workflow_dir.strip("/"))

    def __call__(self, path: Path | str) -> ItemResult:
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            return ItemResult(warning_count=1, output_text=f"WARN: Cannot read {file_path}: {exc}\n")
        if b"\x00" in data[:_BINARY_SNIFF]:
            return ItemResult()
        text = data.decode("utf-8", errors="replace")

        lines: list[str] = []
        errors = 0
        warnings = 0
        for lineno, line in enumerate(text.splitlines(), start=1):
            for label, pattern in SECRET_PATTERNS:
                if pattern.search(line):
                    lines.append(f"ERROR: {file_path}:{lineno}: potential hardcoded secret ({label})")
                    errors += 1

        if self.is_workflow(file_path):
            custom = sorted({name for name in _SECRET_REFERENCE.findall(text) if name != "GITHUB_TOKEN"})
            if custom:
                lines.append(
                    f"WARN: {file_path.name} uses custom secrets ({', '.join(custom)}) - ensure they are configured"
                )
                warnings += 1
            if _WRITE_ALL.search(text):
                lines.append(f"WARN: {file_path.name} uses 'write-all' permissions - consider minimal permissions")
                warnings += 1
            elif "permissions:" not in text:
                lines.append(f"WARN: {file_path.name} doesn't specify permissions")
                warnings += 1

        output = "\n".join(lines) + "\n" if lines else ""
        return ItemResult(error_count=errors, warning_count=warnings, output_text=output)
