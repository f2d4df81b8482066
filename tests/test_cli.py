# tests/test_cli.py
"""
End-to-end tests for the ``wpsniff`` command line.
"""

import json
import logging

import pytest

from wpsniff_shims.main import EXIT_ERRORS, EXIT_FAILURE, EXIT_OK, main

OUTPUT_CODE = "WPSniff.Security.OutputEscaping.UnescapedOutputParameter"


@pytest.fixture(autouse=True)
def restore_logging():
    """``main`` points the package logger at the current stderr; undo it."""
    logger = logging.getLogger("wpsniff_shims")
    saved = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:], logger.level, logger.propagate = saved


@pytest.fixture
def plugin(php_tree):
    return php_tree({
        "plugin.php": "<?php\necho $_GET['q'];\necho $title;\n",
        "clean.php": "<?php\necho esc_html( $title );\n",
        "vendor/lib.php": "<?php\necho $_POST['x'];\n",
    })


class TestCheck:

    def test_errors_exit_one(self, plugin, capsys):
        rc = main(["check", str(plugin / "plugin.php")])
        out, err = capsys.readouterr()
        assert rc == EXIT_ERRORS
        lines = out.splitlines()
        assert lines[0].endswith(f"plugin.php:2:1: error: Unescaped parameter $_GET['q'] used in echo [{OUTPUT_CODE}]")
        assert lines[1].endswith(f"plugin.php:3:1: warning: Unescaped parameter $title used in echo [{OUTPUT_CODE}]")
        assert "1 error; 1 warning (2 total)" in err

    def test_clean_file_exit_zero(self, plugin, capsys):
        rc = main(["check", str(plugin / "clean.php")])
        out, err = capsys.readouterr()
        assert rc == EXIT_OK
        assert out == ""
        assert "no diagnostics emitted" in err

    def test_warnings_only_exit_zero(self, php_tree, capsys):
        root = php_tree({"a.php": "<?php echo $title;"})
        assert main(["check", str(root)]) == EXIT_OK
        assert "warning" in capsys.readouterr().out

    def test_no_warnings(self, plugin, capsys):
        rc = main(["check", "--no-warnings", str(plugin / "plugin.php")])
        out, _ = capsys.readouterr()
        assert rc == EXIT_ERRORS
        assert len(out.splitlines()) == 1

    def test_exclude_code(self, plugin, capsys):
        rc = main(["check", "--exclude-code", "WPSniff.Security.*", str(plugin / "plugin.php")])
        assert rc == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_checker_selection(self, plugin, capsys):
        rc = main(["check", "-c", "Commenting.*", str(plugin / "plugin.php")])
        assert rc == EXIT_OK
        capsys.readouterr()

    def test_config_excludes_paths(self, plugin, capsys):
        ruleset = plugin / "ruleset.json"
        ruleset.write_text(json.dumps({
            "exclude_paths": ["*/vendor/*"],
            "checkers": {"enable": ["Security.OutputEscaping"]},
        }), encoding="utf-8")
        rc = main(["check", "--config", str(ruleset), "--format", "json", str(plugin)])
        out, _ = capsys.readouterr()
        assert rc == EXIT_ERRORS
        doc = json.loads(out)
        files = {d["file"].replace("\\", "/").rsplit("/", 1)[-1] for d in doc["diagnostics"]}
        assert files == {"plugin.php"}
        assert doc["totals"] == {"errors": 1, "warnings": 1}

    def test_output_file(self, plugin, tmp_path, capsys):
        target = tmp_path / "report.sarif"
        rc = main(["check", "--format", "sarif", "-o", str(target), str(plugin / "plugin.php")])
        assert rc == EXIT_ERRORS
        assert capsys.readouterr().out == ""
        log = json.loads(target.read_text(encoding="utf-8"))
        assert len(log["runs"][0]["results"]) == 2

    def test_tokenizer_failure_is_an_error(self, php_tree, capsys):
        root = php_tree({"broken.php": "<?php\n$a = 'never closed;\n"})
        assert main(["check", str(root / "broken.php")]) == EXIT_ERRORS
        assert "Internal.Tokenizer.Exception" in capsys.readouterr().out


class TestFailures:

    def test_bad_config(self, plugin, capsys):
        ruleset = plugin / "bad.json"
        ruleset.write_text('{"checkers": {"enable": ["Nope"]}}', encoding="utf-8")
        assert main(["check", "--config", str(ruleset), str(plugin)]) == EXIT_FAILURE
        assert "no checker matches 'Nope'" in capsys.readouterr().err

    def test_missing_path(self, tmp_path, capsys):
        assert main(["check", str(tmp_path / "nowhere")]) == EXIT_FAILURE
        assert "no such file or directory" in capsys.readouterr().err

    def test_unknown_checker(self, plugin, capsys):
        assert main(["check", "-c", "Nope.*", str(plugin)]) == EXIT_FAILURE
        assert "no checker matches 'Nope.*'" in capsys.readouterr().err

    def test_unwritable_output(self, plugin, tmp_path, capsys):
        target = tmp_path / "missing-dir" / "out.json"
        assert main(["check", "-o", str(target), str(plugin / "clean.php")]) == EXIT_FAILURE
        assert "cannot write" in capsys.readouterr().err

    def test_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["check"])
        assert exc_info.value.code == 2
        capsys.readouterr()


class TestOtherCommands:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_OK
        assert "usage: wpsniff" in capsys.readouterr().out

    def test_list(self, capsys):
        assert main(["list"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Security.DirectDB\n" in out
        assert "      WPSniff.Security.DirectDB.UnescapedDBParameter\n" in out
        assert "      WPSniff.PHP.Heredoc.HeredocNotAllowed\n" in out

    def test_tokens(self, php_tree, capsys):
        root = php_tree({"t.php": "<?php\nif ( $a ) { echo 1; } // phpcs:ignore\n"})
        assert main(["tokens", "--skip-whitespace", str(root / "t.php")]) == EXIT_OK
        out = capsys.readouterr().out
        assert "WHITESPACE" not in out
        assert "VARIABLE" in out and "'$a'" in out
        assert "scope=" in out
        assert "ignored lines:\n  2: .all" in out

    def test_tokens_missing_file(self, tmp_path, capsys):
        assert main(["tokens", str(tmp_path / "none.php")]) == EXIT_FAILURE
        assert "cannot read" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "wpsniff 0.2.0" in capsys.readouterr().out
