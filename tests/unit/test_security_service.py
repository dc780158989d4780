from __future__ import annotations

from pathlib import Path

from wfmaint.services.security_service import SecretScanner

FAKE_PAT = "ghp_" + "a1B2" * 9


def _workflow(tmp_path: Path, name: str, text: str) -> Path:
    directory = tmp_path / ".github" / "workflows"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path


def test_detects_token_without_echoing_value(tmp_path):
    source = tmp_path / "deploy.sh"
    source.write_text(f"echo start\nexport GH={FAKE_PAT}\n", encoding="utf-8")

    result = SecretScanner()(source)

    assert result.error_count == 1
    assert f"{source}:2: potential hardcoded secret (GitHub personal access token)" in result.output_text
    assert FAKE_PAT not in result.output_text


def test_assignment_patterns(tmp_path):
    source = tmp_path / "settings.py"
    source.write_text(
        'password = "hunter22hunter"\n'
        'API_KEY: "abcdefghijklmnopqrstuvwxyz"\n'
        'short_password = "abc"\n',
        encoding="utf-8",
    )

    result = SecretScanner()(source)

    assert result.error_count == 2
    assert "(password assignment)" in result.output_text
    assert "(api key assignment)" in result.output_text


def test_clean_file_produces_no_output(tmp_path):
    source = tmp_path / "main.py"
    source.write_text("print('hello')\n", encoding="utf-8")

    result = SecretScanner()(source)

    assert result.error_count == 0
    assert result.warning_count == 0
    assert result.output_text == ""


def test_binary_files_are_skipped(tmp_path):
    blob = tmp_path / "image.bin"
    blob.write_bytes(b"\x00\x01" + FAKE_PAT.encode())
    assert SecretScanner()(blob).error_count == 0


def test_workflow_secret_hygiene(tmp_path):
    path = _workflow(
        tmp_path,
        "deploy.yml",
        "on: push\n"
        "permissions: write-all\n"
        "jobs:\n"
        "  d:\n"
        "    steps:\n"
        "      - run: deploy\n"
        "        env:\n"
        "          A: ${{ secrets.DEPLOY_KEY }}\n"
        "          B: ${{ secrets.GITHUB_TOKEN }}\n"
        "          C: ${{ secrets.NPM_TOKEN }}\n",
    )

    result = SecretScanner()(path)

    assert result.error_count == 0
    assert result.warning_count == 2
    assert "uses custom secrets (DEPLOY_KEY, NPM_TOKEN)" in result.output_text
    assert "'write-all' permissions" in result.output_text


def test_workflow_without_permissions(tmp_path):
    path = _workflow(tmp_path, "ci.yml", "on: push\njobs: {}\n")

    result = SecretScanner()(path)

    assert result.warning_count == 1
    assert "doesn't specify permissions" in result.output_text


def test_non_workflow_yaml_skips_hygiene_checks(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("key: ${{ secrets.OTHER }}\n", encoding="utf-8")

    assert SecretScanner().is_workflow(path) is False
    assert SecretScanner()(path).warning_count == 0


def test_custom_workflow_dir(tmp_path):
    directory = tmp_path / "ci" / "pipelines"
    directory.mkdir(parents=True)
    path = directory / "main.yaml"
    path.write_text("on: push\n", encoding="utf-8")

    assert SecretScanner("ci/pipelines").is_workflow(path) is True
