"""
Terminal menu tests - scripted input through the main loop.
"""

import pytest

from trade_viewer_cli import TradeViewerCLI, trade_summary_line
from trade_viewer_session import TradeViewerSession
from viewer_config import ViewerConfig


@pytest.fixture
def run_cli(monkeypatch):
    sessions = []

    def run(*answers):
        feed = iter(answers)
        monkeypatch.setattr("builtins.input", lambda prompt="": next(feed))
        session = TradeViewerSession(ViewerConfig())
        sessions.append(session)
        cli = TradeViewerCLI(session)
        cli.run()
        return cli

    yield run
    for session in sessions:
        session.close()


@pytest.fixture
def csv_path(tmp_path, sample_csv):
    path = tmp_path / "performance.csv"
    path.write_text(sample_csv)
    return str(path)


def test_import_and_list(run_cli, csv_path, capsys):
    cli = run_cli("1", csv_path, "2", "9")
    out = capsys.readouterr().out
    assert "Imported 3 trades from CSV" in out
    assert "--- All Trades (3 total) ---" in out
    assert "> #2" in out
    assert len(cli.session.trades) == 3


def test_missing_file(run_cli, tmp_path, capsys):
    run_cli("1", str(tmp_path / "missing.csv"), "9")
    assert "Error: Could not read" in capsys.readouterr().out


def test_select_attach_and_export(run_cli, csv_path, tmp_path, png_bytes, capsys):
    image = tmp_path / "entry.png"
    image.write_bytes(png_bytes)
    out_pdf = tmp_path / "out.pdf"
    cli = run_cli("1", csv_path, "3", "1", "4", "2", str(image), "6", "faded the open",
                  "7", str(out_pdf), "9")
    out = capsys.readouterr().out
    assert "--- Trade #1: XAUUSD ---" in out
    assert "Image 2 added successfully" in out
    assert out_pdf.read_bytes().startswith(b"%PDF")
    assert cli.session.store.note_for(1) == "faded the open"


def test_export_without_trades(run_cli, capsys):
    run_cli("7", "9")
    assert "Export unavailable" in capsys.readouterr().out


def test_invalid_choice(run_cli, capsys):
    run_cli("x", "9")
    assert "Invalid choice" in capsys.readouterr().out


def test_summary_line_marks_losses(make_trade):
    line = trade_summary_line(make_trade(profit_loss=-50.0), selected=True)
    assert line.startswith("> #1")
    assert "Loss" in line


def test_detail_numbers_match_pdf_formatting(run_cli, csv_path, capsys):
    run_cli("1", csv_path, "3", "1", "9")
    out = capsys.readouterr().out
    assert "Entry Price: 1900\n" in out
    assert "Quantity:    1\n" in out
    assert "1900 -> 1905" in out
