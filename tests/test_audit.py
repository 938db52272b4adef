"""Tests for the entry file security audit."""

import pytest

from warden.audit import audit
from warden.errors import InvalidEntry
from warden.models import Severity


def write(tmp_path, name, content, mode=0o644):
    path = tmp_path / name
    path.write_text(content)
    path.chmod(mode)
    return path


def messages(findings):
    return [f.message for f in findings]


def test_clean_file_passes(tmp_path):
    path = write(tmp_path, "app.ts", "Bun.serve({ port: 3000, fetch: () => new Response('ok') });\n")

    report = audit(path)

    assert report.passed
    assert report.critical == []
    assert report.warning == []


def test_eval_is_critical_with_line_number(tmp_path):
    path = write(tmp_path, "app.js", "const x = 1;\nconst y = eval('x + 1');\n")

    report = audit(path)

    assert not report.passed
    assert messages(report.critical) == ["Use of eval() detected (line 2)"]
    assert report.critical[0].severity is Severity.CRITICAL


def test_method_named_eval_is_not_flagged(tmp_path):
    path = write(tmp_path, "app.js", "model.eval();\nconst evaluate = (x) => x;\n")

    assert audit(path).passed


def test_world_writable_is_critical(tmp_path):
    path = write(tmp_path, "app.js", "console.log('hi');\n", mode=0o666)

    report = audit(path)

    assert "File is world-writable" in messages(report.critical)


@pytest.mark.parametrize(
    "source",
    [
        "const f = new Function('return 1');\n",
        "const cp = require('child_process');\n",
        "import { execSync } from 'node:child_process';\n",
        "import fs from 'fs';\n",
        "const cmd = process.env.TOOL + ' --run';\n",
    ],
)
def test_javascript_critical_patterns(tmp_path, source):
    path = write(tmp_path, "app.js", source)

    assert not audit(path).passed


@pytest.mark.parametrize(
    "source",
    [
        "exec(code)\n",
        "import os\nos.system('ls')\n",
        "subprocess.run(cmd, shell=True)\n",
        "import shutil\n",
        "cmd = os.environ['TOOL'] + ' --run'\n",
    ],
)
def test_python_critical_patterns(tmp_path, source):
    path = write(tmp_path, "app.py", source)

    assert not audit(path).passed


def test_warnings_do_not_block(tmp_path):
    path = write(
        tmp_path,
        "app.js",
        "const res = await fetch('https://example.com');\nawait Bun.write('out.txt', await res.text());\n",
    )

    report = audit(path)

    assert report.passed
    assert len(report.warning) == 2
    assert report.warning[0].message.startswith("Network access detected")
    assert report.warning[1].message.endswith("(line 2)")


def test_all_rules_are_reported(tmp_path):
    path = write(
        tmp_path,
        "app.js",
        "eval('1');\nrequire('fs');\nfetch('http://x');\n",
        mode=0o666,
    )

    report = audit(path)

    assert len(report.critical) == 3
    assert len(report.warning) == 1


def test_missing_file_raises(tmp_path):
    with pytest.raises(InvalidEntry):
        audit(tmp_path / "missing.js")
