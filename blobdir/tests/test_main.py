import logging
from unittest import mock

import pytest

from blobdir.__main__ import main
import blobdir.constants as constants
from blobdir.directory import BlobDirectory
from blobdir.logger import log
from blobdir.store import LocalBlobService


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config"
    path.write_text(
        f"""
        [store]
        backend = local
        path = {tmp_path / "store"}

        [cache]
        path = {tmp_path / "cache"}
        """
    )
    return str(path)


def run(*args):
    with pytest.raises(SystemExit) as exc_info:
        main(list(args))

    return exc_info.value.code


def open_catalog(tmp_path, catalog="index"):
    return BlobDirectory(
        LocalBlobService(str(tmp_path / "store")),
        catalog,
        cache=str(tmp_path / "other-cache"),
    )


def test_no_args():
    with pytest.raises(SystemExit):
        main([])


def test_debug_flag_set(config_file):
    run("--config", config_file, "--debug", "ls")

    assert log.getEffectiveLevel() == logging.DEBUG


def test_debug_flag_not_set(config_file):
    run("--config", config_file, "ls")

    assert log.getEffectiveLevel() == logging.ERROR


def test_put_and_cat(config_file, tmp_path, capsysbinary):
    (tmp_path / "src").write_bytes(b"file contents")

    assert run("--config", config_file, "put", "foo", str(tmp_path / "src")) == 0

    assert open_catalog(tmp_path).file_length("foo") == 13

    assert run("--config", config_file, "cat", "foo") == 0
    assert capsysbinary.readouterr().out == b"file contents"


def test_ls(config_file, tmp_path, capsys):
    directory = open_catalog(tmp_path, "main")

    for name in ["b", "a"]:
        with directory.create_output(name) as out:
            out.write(b"abc")

    assert run("--config", config_file, "--catalog", "Main", "ls") == 0

    lines = capsys.readouterr().out.splitlines()

    assert [line.split() for line in lines] == [["3", "a"], ["3", "b"]]


def test_rm(config_file, tmp_path):
    with open_catalog(tmp_path).create_output("foo") as out:
        out.write(b"abc")

    assert run("--config", config_file, "rm", "foo") == 0
    assert not open_catalog(tmp_path).file_exists("foo")


def test_clear_cache(config_file, tmp_path):
    (tmp_path / "src").write_bytes(b"abc")
    run("--config", config_file, "put", "foo", str(tmp_path / "src"))

    assert (tmp_path / "cache" / "index" / "foo.blob").exists()

    assert run("--config", config_file, "clear-cache") == 0

    assert not (tmp_path / "cache" / "index" / "foo.blob").exists()
    assert open_catalog(tmp_path).file_exists("foo")


def test_break_lock(config_file, tmp_path):
    lock = open_catalog(tmp_path).make_lock("write.lock")
    assert lock.obtain()

    assert run("--config", config_file, "break-lock", "write.lock") == 0

    assert not lock.is_locked()


def test_cat_missing_file(config_file, caplog):
    assert run("--config", config_file, "cat", "foo") == constants.BLOBDIR_ERROR_CODE

    assert "no such file: foo" in caplog.text


def test_command_failure(config_file, caplog):
    with mock.patch("blobdir.commands.BlobDirectory") as mock_directory:
        mock_directory.from_config.side_effect = Exception("foo")

        assert run("--config", config_file, "ls") == constants.BLOBDIR_ERROR_CODE

    assert "failed to run command: foo" in caplog.text


def test_keyboard_interrupt(config_file):
    with mock.patch("blobdir.commands.BlobDirectory") as mock_directory:
        mock_directory.from_config.side_effect = KeyboardInterrupt()

        assert run("--config", config_file, "ls") == 130


def test_serve(config_file):
    with mock.patch("blobdir.commands.rpc.Server") as mock_server:
        run("--config", config_file, "serve", "--workers=2")

    assert mock_server.call_args[1]["worker_count"] == 2
    assert mock_server().serve.called
