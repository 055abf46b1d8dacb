"""一键启动脚本测试"""

import builtins

import start


class TestMissingPackages:

    def test_reports_pip_names(self, monkeypatch):
        def fake_import(name, *args, **kwargs):
            if name in ("sounddevice", "fpdf"):
                raise ImportError(name)
            return builtins

        monkeypatch.setattr(builtins, "__import__", fake_import)
        missing = start.missing_packages()
        monkeypatch.undo()
        assert missing == ["sounddevice", "fpdf2"]


class TestBanner:

    def test_lists_endpoints(self, capsys):
        start.print_banner("http://localhost:8080")
        out = capsys.readouterr().out
        assert "http://localhost:8080" in out
        assert "/api/session/start" in out
        assert "/api/report.pdf" in out
