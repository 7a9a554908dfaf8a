import io
import os
import struct

import pytest
from PIL import Image

import image_to_ico
from conversion_errors import DecodeError, IoError
from icon_container import read_icon_directory
from icon_variants import VariantSettings
from image_to_ico import (
    SCRIPT_DIRECTORY,
    BatchSummary,
    ConversionResult,
    ConversionState,
    convert,
    convert_directory,
    convert_image_file,
    find_convertible_images,
    build_argument_parser,
    main,
    replace_with_ico_extension,
)


SMALL_LADDER = VariantSettings(sizes=(16, 32))


@pytest.fixture
def image_directory(tmp_path, png_bytes, random_rgba, encode_array):
    (tmp_path / "first.png").write_bytes(png_bytes(40, 24))
    (tmp_path / "second.JPG").write_bytes(encode_array(random_rgba(30, 30), "JPEG"))
    (tmp_path / "broken.png").write_bytes(b"definitely not a png")
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path


def test_end_to_end_container_layout(png_bytes):
    container = convert(png_bytes(512, 300), VariantSettings(sizes=(16, 32, 256)))

    assert struct.unpack_from("<HHH", container, 0) == (0, 1, 3)
    entries = read_icon_directory(container)
    assert [(entry.width, entry.height) for entry in entries] == [(16, 16), (32, 32), (0, 0)]
    assert all(entry.color_planes == 1 and entry.bits_per_pixel == 32 for entry in entries)

    payload_total = sum(entry.payload_length for entry in entries)
    assert len(container) == 6 + 48 + payload_total

    for entry, size_pixels in zip(entries, (16, 32, 256)):
        payload = container[entry.payload_offset:entry.payload_offset + entry.payload_length]
        with Image.open(io.BytesIO(payload)) as payload_image:
            assert payload_image.size == (size_pixels, size_pixels)


def test_container_opens_as_icon(png_bytes):
    container = convert(png_bytes(64, 64), VariantSettings(sizes=(16, 48, 256)))
    with Image.open(io.BytesIO(container)) as icon_image:
        assert icon_image.format == "ICO"
        assert icon_image.info["sizes"] == {(16, 16), (48, 48), (256, 256)}


def test_convert_is_deterministic(png_bytes):
    source_bytes = png_bytes(50, 70)
    assert convert(source_bytes, SMALL_LADDER) == convert(source_bytes, SMALL_LADDER)


def test_convert_rejects_non_image():
    with pytest.raises(DecodeError):
        convert(b"plain text", SMALL_LADDER)


def test_replace_with_ico_extension():
    assert replace_with_ico_extension("/icons/logo.png") == "/icons/logo.ico"
    assert replace_with_ico_extension("/icons/logo") == "/icons/logo.ico"
    assert replace_with_ico_extension("archive.tar.PNG") == "archive.tar.ico"


def test_convert_image_file_writes_next_to_source(tmp_path, png_bytes):
    source_path = tmp_path / "logo.png"
    source_path.write_bytes(png_bytes(20, 40))

    result = convert_image_file(str(source_path), settings=SMALL_LADDER)

    assert result.succeeded
    assert result.state is ConversionState.WRITTEN
    assert result.error is None
    assert result.output_path == str(tmp_path / "logo.ico")
    entries = read_icon_directory((tmp_path / "logo.ico").read_bytes())
    assert [entry.width for entry in entries] == [16, 32]


def test_convert_image_file_decode_failure_leaves_no_output(tmp_path):
    source_path = tmp_path / "fake.png"
    source_path.write_bytes(b"not an image at all")

    result = convert_image_file(str(source_path), settings=SMALL_LADDER)

    assert result.state is ConversionState.FAILED
    assert result.last_completed_state is ConversionState.IDLE
    assert isinstance(result.error, DecodeError)
    assert result.error.reason == "DecodeError"
    assert not (tmp_path / "fake.ico").exists()


def test_convert_image_file_missing_input(tmp_path):
    result = convert_image_file(str(tmp_path / "absent.png"), settings=SMALL_LADDER)
    assert isinstance(result.error, IoError)
    assert not result.succeeded


def test_convert_image_file_unwritable_output(tmp_path, png_bytes):
    source_path = tmp_path / "logo.png"
    source_path.write_bytes(png_bytes(20, 20))

    result = convert_image_file(str(source_path), str(tmp_path / "nope" / "logo.ico"), SMALL_LADDER)

    assert isinstance(result.error, IoError)
    assert result.last_completed_state is ConversionState.VARIANTS_GENERATED


def test_find_convertible_images_filters_extensions(image_directory):
    found = [path.rsplit("/", 1)[-1] for path in find_convertible_images(str(image_directory))]
    assert found == ["broken.png", "first.png", "second.JPG"]


def test_find_convertible_images_missing_directory(tmp_path):
    with pytest.raises(IoError):
        find_convertible_images(str(tmp_path / "missing"))


def test_convert_directory_continues_past_failures(image_directory):
    reported = []
    summary = convert_directory(str(image_directory), SMALL_LADDER, report=reported.append)

    assert (summary.total, summary.succeeded, summary.failed) == (3, 2, 1)
    assert summary.exit_code == 2
    assert reported == summary.results
    assert (image_directory / "first.ico").exists()
    assert (image_directory / "second.ico").exists()
    assert not (image_directory / "broken.ico").exists()


def _result(state):
    return ConversionResult("in.png", "in.ico", state, state)


@pytest.mark.parametrize(
    "states, expected",
    [
        ([], 1),
        ([ConversionState.FAILED], 1),
        ([ConversionState.WRITTEN, ConversionState.WRITTEN], 0),
        ([ConversionState.WRITTEN, ConversionState.FAILED], 2),
    ],
)
def test_batch_exit_codes(states, expected):
    assert BatchSummary([_result(state) for state in states]).exit_code == expected


def test_cli_batch_mixed(image_directory, capsys):
    exit_code = main(["--directory", str(image_directory), "--sizes", "16,32"])

    output = capsys.readouterr().out
    assert exit_code == 2
    assert f"Batch converting images in: {image_directory}" in output
    assert "FAIL (DecodeError:" in output
    assert "Done. Total: 3, Success: 2, Failed: 1" in output


def test_cli_batch_all_succeed(tmp_path, png_bytes, capsys):
    (tmp_path / "one.png").write_bytes(png_bytes(10, 10))
    (tmp_path / "two.png").write_bytes(png_bytes(12, 8))

    assert main(["--directory", str(tmp_path), "--sizes", "16", "--workers", "2"]) == 0
    assert "Done. Total: 2, Success: 2, Failed: 0" in capsys.readouterr().out


def test_cli_batch_empty_directory(tmp_path, capsys):
    assert main(["--directory", str(tmp_path)]) == 1
    output = capsys.readouterr().out
    assert "No convertible images found in:" in output
    assert "Usage:" in output


def test_cli_single_file(tmp_path, png_bytes, capsys):
    source_path = tmp_path / "logo.png"
    source_path.write_bytes(png_bytes(33, 17))

    assert main([str(source_path), "--sizes", "16,24", "--filter", "bicubic"]) == 0
    assert f"SUCCESS: wrote {tmp_path / 'logo.ico'}" in capsys.readouterr().out
    assert len(read_icon_directory((tmp_path / "logo.ico").read_bytes())) == 2


def test_cli_single_file_decode_failure(tmp_path, capsys):
    source_path = tmp_path / "logo.png"
    source_path.write_bytes(b"garbage")

    assert main([str(source_path), "--sizes", "16"]) == 1
    assert "FAILURE: DecodeError:" in capsys.readouterr().err
    assert not (tmp_path / "logo.ico").exists()


def test_cli_single_file_wrong_extension(tmp_path, capsys):
    assert main([str(tmp_path / "notes.txt")]) == 1
    assert "Input must be an image file" in capsys.readouterr().out


def test_cli_too_many_arguments(capsys):
    assert main(["a.png", "b.png"]) == 1
    assert "Usage:" in capsys.readouterr().out


@pytest.mark.parametrize("arguments", [["--sizes", "32,16"], ["--sizes", "x"], ["--workers", "0"]])
def test_cli_rejects_bad_options(arguments):
    with pytest.raises(SystemExit) as raised:
        main(arguments)
    assert raised.value.code == 2


def test_batch_directory_defaults_to_script_directory():
    arguments = build_argument_parser().parse_args([])
    assert arguments.directory == SCRIPT_DIRECTORY
    assert SCRIPT_DIRECTORY == os.path.dirname(os.path.abspath(image_to_ico.__file__))


def test_cli_batch_lists_directory_once(image_directory, monkeypatch, capsys):
    listed = []
    real_find = image_to_ico.find_convertible_images

    def counting_find(directory):
        listed.append(directory)
        return real_find(directory)

    monkeypatch.setattr(image_to_ico, "find_convertible_images", counting_find)

    assert main(["--directory", str(image_directory), "--sizes", "16"]) == 2
    assert listed == [str(image_directory)]
