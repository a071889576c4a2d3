"""Tests for make_qr: QR codes pointing at redirect URLs."""

import json

import pytest

from make_qr import file_stem, hex_to_rgb, main, parse_args, redirect_url, unique_stems

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def qr_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"redirections": {"/flyer": "https://example.com/sale", "/": "/home"}}),
        encoding="utf-8",
    )
    return path


class TestHelpers:
    def test_redirect_url(self) -> None:
        assert redirect_url("https://go.example.com/", "/flyer") == "https://go.example.com/flyer"
        assert redirect_url("https://go.example.com", "flyer") == "https://go.example.com/flyer"

    @pytest.mark.parametrize(
        ("path", "stem"),
        [("/", "root"), ("/flyer", "flyer"), ("/a/b", "a_b"), ("/spring sale!", "spring_sale")],
    )
    def test_file_stem(self, path: str, stem: str) -> None:
        assert file_stem(path) == stem

    def test_unique_stems(self) -> None:
        stems = unique_stems(["/a/b", "/a_b", "/flyer"])

        assert stems["/flyer"] == "flyer"
        assert stems["/a/b"] != stems["/a_b"]
        assert stems["/a/b"].startswith("a_b-")
        assert stems["/a_b"].startswith("a_b-")

    def test_hex_to_rgb(self) -> None:
        assert hex_to_rgb("#000") == (0, 0, 0)
        assert hex_to_rgb("fffffa") == (255, 255, 250)

    def test_hex_to_rgb_invalid(self) -> None:
        with pytest.raises(ValueError):
            hex_to_rgb("#12345")

    def test_parse_args_paths(self) -> None:
        args = parse_args(["--path", "/a", "--path", "/b", "--no-svg"])

        assert args.paths == ["/a", "/b"]
        assert args.svg is False


class TestMain:
    def test_renders_every_redirection(self, qr_config, tmp_path) -> None:
        out = tmp_path / "out"

        code = main(["--config", str(qr_config), "--out-dir", str(out), "--box-size", "4"])

        assert code == 0
        for stem in ("flyer", "root"):
            assert (out / f"{stem}.png").read_bytes().startswith(PNG_MAGIC)
            assert "<svg" in (out / f"{stem}.svg").read_text(encoding="utf-8")

    def test_explicit_paths_skip_config(self, tmp_path) -> None:
        out = tmp_path / "out"

        code = main(
            [
                "--config", str(tmp_path / "missing.json"),
                "--path", "/promo",
                "--out-dir", str(out),
                "--box-size", "4",
                "--no-svg",
                "--card",
            ]
        )

        assert code == 0
        assert (out / "promo.png").exists()
        assert not (out / "promo.svg").exists()

    def test_colliding_stems_get_distinct_files(self, tmp_path) -> None:
        out = tmp_path / "out"

        code = main(
            [
                "--path", "/a/b",
                "--path", "/a_b",
                "--path", "/a b",
                "--out-dir", str(out),
                "--box-size", "4",
                "--no-svg",
            ]
        )

        assert code == 0
        assert len(list(out.glob("*.png"))) == 3

    def test_missing_config(self, tmp_path, capsys) -> None:
        code = main(["--config", str(tmp_path / "missing.json")])

        assert code == 1
        assert "[ERROR]" in capsys.readouterr().out

    def test_empty_config(self, tmp_path, capsys) -> None:
        path = tmp_path / "config.json"
        path.write_text('{"redirections": {}}', encoding="utf-8")

        assert main(["--config", str(path), "--out-dir", str(tmp_path / "out")]) == 1
        assert "No redirections" in capsys.readouterr().out

    def test_bad_color(self, tmp_path, capsys) -> None:
        code = main(
            ["--path", "/a", "--color", "nope", "--out-dir", str(tmp_path / "out")]
        )

        assert code == 1
        assert "[ERROR]" in capsys.readouterr().out
