"""Tests for the actorc command line driver."""

import ast

import pytest

from actorgen import actorc
from actorgen.actorc import main


@pytest.fixture
def calc_file(tmp_path, calc_source):
    path = tmp_path / "calc.py"
    path.write_text(calc_source)
    return path


def exit_code(argv):
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


class TestExitCodes:
    """Test the numbered exit codes."""

    def test_no_input(self, capsys):
        assert exit_code([]) == actorc.EXIT_NO_INPUT == 1
        assert "No input file specified" in capsys.readouterr().err

    def test_same_file(self, calc_file, capsys):
        assert exit_code(["-i", str(calc_file), "-o", str(calc_file)]) == actorc.EXIT_SAME_FILE == 2
        assert "same" in capsys.readouterr().err

    def test_compile_error(self, tmp_path, capsys):
        path = tmp_path / "broken.py"
        path.write_text("class Calc(:\n")
        assert exit_code(["-i", str(path)]) == actorc.EXIT_COMPILE == 3
        err = capsys.readouterr().err
        assert err.startswith("Error: ")
        assert "Line 1" in err

    def test_missing_input(self, tmp_path):
        assert exit_code(["-i", str(tmp_path / "missing.py")]) == actorc.EXIT_COMPILE

    def test_format_error(self, calc_file, monkeypatch):
        monkeypatch.setattr(actorc, "generate_python", lambda package: "def broken(:\n")
        assert exit_code(["-i", str(calc_file)]) == actorc.EXIT_FORMAT == 4

    def test_output_not_creatable(self, calc_file, tmp_path, capsys):
        out = tmp_path / "no" / "such" / "dir" / "calc_actors.py"
        assert exit_code(["-i", str(calc_file), "-o", str(out)]) == actorc.EXIT_OUTPUT == 5
        assert "Unable to create output file" in capsys.readouterr().err

    def test_bad_config(self, calc_file, tmp_path, capsys):
        config = tmp_path / "actorc.yaml"
        config.write_text("colour: blue\n")
        assert exit_code(["-i", str(calc_file), "-c", str(config)]) == actorc.EXIT_CONFIG == 6
        assert "colour" in capsys.readouterr().err


class TestOutput:
    """Test successful runs."""

    def test_stdout(self, calc_file, capsys):
        main(["-i", str(calc_file)])
        out = capsys.readouterr().out
        assert "GENERATED FROM calc.py" in out
        assert "class CalculatorRef:" in out
        ast.parse(out)

    def test_output_file(self, calc_file, tmp_path, capsys):
        out = tmp_path / "calc_actors.py"
        main(["-i", str(calc_file), "-o", str(out), "-m", "pkg.calc"])
        text = out.read_text()
        assert "import pkg.calc" in text
        assert "class _CalculatorImpl(pkg.calc.Calculator):" in text
        assert capsys.readouterr().out == ""

    def test_failed_format_leaves_no_output(self, calc_file, tmp_path, monkeypatch):
        monkeypatch.setattr(actorc, "generate_python", lambda package: "def broken(:\n")
        out = tmp_path / "calc_actors.py"
        exit_code(["-i", str(calc_file), "-o", str(out)])
        assert not out.exists()

    def test_config_applies(self, tmp_path, capsys):
        source = tmp_path / "calc.py"
        source.write_text(
            "from actorgen.actor import Actor\n"
            "\n"
            "class Calc:\n"
            "    actor: Actor\n"
            "\n"
            "    def setup(self, n: int):\n"
            "        self.n = n\n"
        )
        config = tmp_path / "actorc.yaml"
        config.write_text("init_method: setup\nexcluded_methods: [setup]\n")
        main(["-i", str(source), "-c", str(config)])
        out = capsys.readouterr().out
        assert "def new_calc(n: int) -> Calc:" in out
        assert "    _act.setup(n)" in out
