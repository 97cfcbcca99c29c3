"""Tests for the command-line entry point."""

import pytest
from bs4 import BeautifulSoup

import inlinefy


TEMPLATE = (
    "<html><head><style>.a{color:blue;font-weight:bold;}</style></head>"
    '<body><div class="a" style="color:red">x</div></body></html>'
)


class TestEntryPoint:
    def test_console_script_target(self):
        assert inlinefy.main.__module__ == "inlinefy"
        assert callable(inlinefy.main)


class TestArguments:
    def test_template_is_required(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            inlinefy.parse_args([])
        assert excinfo.value.code == 2
        assert "-t/--template" in capsys.readouterr().err

    def test_short_and_long_forms(self):
        assert inlinefy.parse_args(["-t", "in.html", "-o", "out.html"]).output == "out.html"
        args = inlinefy.parse_args(["--template", "in.html"])
        assert args.template == "in.html"
        assert args.output is None
        assert args.parser == "lxml"


class TestMain:
    def test_overwrites_template_by_default(self, tmp_path):
        template = tmp_path / "email.html"
        template.write_text(TEMPLATE, encoding="utf-8")

        assert inlinefy.main(["-t", str(template)]) == 0

        soup = BeautifulSoup(template.read_text(encoding="utf-8"), "lxml")
        assert soup.div["style"] == "color: red; font-weight: bold;"
        assert template.read_text(encoding="utf-8").count("<style>") == 3

    def test_writes_output_path(self, tmp_path):
        template = tmp_path / "email.html"
        template.write_text(TEMPLATE, encoding="utf-8")
        output = tmp_path / "build" / "email.html"

        assert inlinefy.main(["-t", str(template), "-o", str(output)]) == 0

        assert template.read_text(encoding="utf-8") == TEMPLATE
        assert 'style="color: red; font-weight: bold;"' in output.read_text(encoding="utf-8")

    def test_missing_template_file(self, tmp_path, capsys):
        output = tmp_path / "out.html"
        assert inlinefy.main(["-t", str(tmp_path / "nope.html"), "-o", str(output)]) == 1
        assert "does not exist" in capsys.readouterr().err
        assert not output.exists()

    def test_css_syntax_error_aborts_without_writing(self, tmp_path, capsys):
        template = tmp_path / "email.html"
        broken = "<html><head><style>p..x { color: red }</style></head><body></body></html>"
        template.write_text(broken, encoding="utf-8")

        assert inlinefy.main(["-t", str(template)]) == 1
        assert capsys.readouterr().err.startswith("Error: ")
        assert template.read_text(encoding="utf-8") == broken


class TestFormatHtml:
    def test_one_tag_per_line(self):
        soup = BeautifulSoup("<html><body><p>x</p><p>y</p></body></html>", "lxml")
        html = inlinefy.format_html(soup)
        assert html.endswith("</html>\n")
        assert "<p>\n" in html

    def test_style_content_not_escaped(self):
        soup = BeautifulSoup(
            "<html><head><style>div > p { color: red }</style></head></html>", "lxml"
        )
        assert "div > p" in inlinefy.format_html(soup)
